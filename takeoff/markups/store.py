from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from loguru import logger

from takeoff.catalog.links import LinkSink
from takeoff.exceptions import MarkupLockedError, MarkupNotFoundError, ValidationError
from takeoff.history import HistoryEntry, HistoryStep, LinkDelta
from takeoff.markups.models import (
    CountMarker,
    apply_changes,
    build_measurement_from_markup,
    only_toggles_lock,
    parse_markup,
)
from takeoff.markups.session import DocumentSession

PageListener = Callable[[DocumentSession, int], None]


def _diff(source: Sequence[Any], target: Sequence[Any]) -> List[Any]:
    """Markups in ``source`` whose id is absent from ``target``."""
    target_ids = {m.id for m in target}
    return [m for m in source if m.id not in target_ids]


class MarkupStore:
    """
    Mutation surface for one document session.

    Every mutation records a history step and marks the session modified.
    Deletions capture the link payloads of the removed markups into the step
    and unlink them before returning.
    """

    def __init__(
        self,
        session: DocumentSession,
        links: LinkSink,
        on_page_changed: Optional[PageListener] = None,
    ) -> None:
        self.session = session
        self.links = links
        self._on_page_changed = on_page_changed

    # ------------------------------------------------------------- helpers

    @property
    def history(self):
        return self.session.history

    def markups(self, page: int) -> Tuple[Any, ...]:
        return self.session.markups(page)

    def _find(self, page: int, markup_id: str) -> Any:
        for markup in self.session.markups(page):
            if markup.id == markup_id:
                return markup
        raise MarkupNotFoundError(
            f"Markup {markup_id} not found on page {page}",
            {"markup_id": markup_id, "page": str(page)},
        )

    def _commit(self, page: int, markups: Tuple[Any, ...]) -> None:
        self.session.markups_by_page[page] = markups
        self.session.modified = True
        if self._on_page_changed is not None:
            self._on_page_changed(self.session, page)

    def _capture_links(self, removed: Iterable[Any]) -> Tuple[LinkDelta, ...]:
        captured = []
        for markup in removed:
            found = self.links.get_by_markup_id(markup.id)
            if found is not None:
                captured.append(found)
        return tuple(captured)

    def _prepare(self, markup: Any, page: int) -> Any:
        markup = parse_markup(markup)
        if markup.page != page:
            markup = markup.model_copy(update={"page": page})
        return markup

    def _ensure_new_id(self, markup_id: str, taken: Iterable[str] = ()) -> None:
        if markup_id in taken or self.session.find_markup(markup_id) is not None:
            raise ValidationError(
                f"Markup id {markup_id} is already used in document {self.session.id}",
                {"markup_id": markup_id, "document_id": self.session.id},
            )

    # ----------------------------------------------------------- mutations

    def add_markup(self, page: int, markup: Any) -> Any:
        self.session.ensure_idle()
        self.session.require_page(page)
        markup = self._prepare(markup, page)
        self._ensure_new_id(markup.id)
        before = self.markups(page)
        after = before + (markup,)
        self.history.push(HistoryEntry(page=page, before=before, after=after, description=f"Added {markup.type}"))
        self._commit(page, after)
        logger.debug("Added {} {} on page {}", markup.type, markup.id, page)
        return markup

    def update_markup(self, page: int, markup_id: str, changes: Dict[str, Any]) -> Any:
        self.session.ensure_idle()
        current = self._find(page, markup_id)
        if current.locked and not only_toggles_lock(changes):
            raise MarkupLockedError(f"Markup {markup_id} is locked", {"markup_id": markup_id})
        updated = apply_changes(current, changes)
        before = self.markups(page)
        after = tuple(updated if m.id == markup_id else m for m in before)
        self.history.push(HistoryEntry(page=page, before=before, after=after, description="Updated markup"))
        self._commit(page, after)
        logger.debug("Updated markup {} on page {}: {}", markup_id, page, sorted(changes))
        return updated

    def delete_markups(self, page: int, ids: Iterable[str], *, description: Optional[str] = None) -> List[Any]:
        self.session.ensure_idle()
        wanted = set(ids)
        before = self.markups(page)
        deleted = [m for m in before if m.id in wanted]
        if not deleted:
            return []
        locked = [m.id for m in deleted if m.locked]
        if locked:
            raise MarkupLockedError(f"Cannot delete locked markups: {', '.join(locked)}", {"markup_ids": ",".join(locked)})
        after = tuple(m for m in before if m.id not in wanted)
        captured = self._capture_links(deleted)
        self.history.push(
            HistoryEntry(
                page=page,
                before=before,
                after=after,
                description=description or f"Deleted {len(deleted)} markup(s)",
                linked_measurements=captured,
            )
        )
        self._commit(page, after)
        for markup in deleted:
            self.links.unlink_by_markup_id(markup.id)
        logger.debug("Deleted {} markup(s) on page {}, {} link(s) cascaded", len(deleted), page, len(captured))
        return deleted

    def delete_markup_anywhere(self, markup_id: str) -> Optional[Any]:
        """Delete a markup wherever it sits in the document; None when absent."""
        found = self.session.find_markup(markup_id)
        if found is None:
            return None
        deleted = self.delete_markups(found[0], [markup_id])
        return deleted[0] if deleted else None

    def set_markups_for_page(self, page: int, markups: Sequence[Any]) -> None:
        """Replace a page collection without recording history (replay and restore)."""
        self._commit(page, tuple(markups))

    def _push_multi_page(self, changes: Dict[int, Tuple[Any, ...]], description: str) -> HistoryStep:
        entries = []
        for page in sorted(changes):
            before = self.markups(page)
            after = changes[page]
            removed = _diff(before, after)
            entries.append(
                HistoryEntry(
                    page=page,
                    before=before,
                    after=after,
                    description=description,
                    linked_measurements=self._capture_links(removed),
                )
            )
        step = tuple(entries)
        if step:
            self.history.push(step)
        return step

    # ---------------------------------------------------------- AI markups

    def add_markup_batch(self, items: Iterable[Tuple[int, Any]], pending: Optional[bool] = True) -> List[Any]:
        """
        Insert AI markups grouped by page as one undoable step.

        ``pending=None`` keeps each markup's own pending flag.
        """
        self.session.ensure_idle()
        grouped: Dict[int, List[Any]] = defaultdict(list)
        seen: set[str] = set()
        for page, markup in items:
            self.session.require_page(page)
            prepared = self._prepare(markup, page)
            self._ensure_new_id(prepared.id, seen)
            seen.add(prepared.id)
            flags: Dict[str, Any] = {"ai_generated": True}
            if pending is not None:
                flags["ai_pending"] = pending
            grouped[page].append(prepared.model_copy(update=flags))
        if not grouped:
            return []
        changes = {page: self.markups(page) + tuple(markups) for page, markups in grouped.items()}
        self._push_multi_page(changes, f"Added {sum(len(v) for v in grouped.values())} AI markup(s)")
        for page, markups in changes.items():
            self._commit(page, markups)
        inserted = [m for page in sorted(grouped) for m in grouped[page]]
        logger.info("Inserted {} AI markup(s) across {} page(s)", len(inserted), len(grouped))
        return inserted

    def confirm_ai_markup(self, page: int, markup_id: str) -> Any:
        return self.update_markup(page, markup_id, {"ai_pending": False})

    def reject_ai_markup(self, page: int, markup_id: str) -> List[Any]:
        return self.delete_markups(page, [markup_id], description="Rejected AI markup")

    def pending_ai_markups(self) -> List[Tuple[int, Any]]:
        return [(page, m) for page in self.session.pages_with_markups() for m in self.markups(page) if m.ai_pending]

    def confirm_all_ai_markups(self) -> int:
        self.session.ensure_idle()
        changes: Dict[int, Tuple[Any, ...]] = {}
        confirmed = 0
        for page in self.session.pages_with_markups():
            current = self.markups(page)
            if not any(m.ai_pending for m in current):
                continue
            changes[page] = tuple(m.model_copy(update={"ai_pending": False}) if m.ai_pending else m for m in current)
            confirmed += sum(1 for m in current if m.ai_pending)
        if not changes:
            return 0
        self._push_multi_page(changes, "Confirmed AI markups")
        for page, markups in changes.items():
            self._commit(page, markups)
        return confirmed

    def reject_all_ai_markups(self) -> int:
        self.session.ensure_idle()
        changes: Dict[int, Tuple[Any, ...]] = {}
        rejected: List[Any] = []
        for page in self.session.pages_with_markups():
            current = self.markups(page)
            removed = [m for m in current if m.ai_pending]
            if not removed:
                continue
            changes[page] = tuple(m for m in current if not m.ai_pending)
            rejected.extend(removed)
        if not changes:
            return 0
        self._push_multi_page(changes, "Rejected AI markups")
        for page, markups in changes.items():
            self._commit(page, markups)
        for markup in rejected:
            self.links.unlink_by_markup_id(markup.id)
        return len(rejected)

    # -------------------------------------------------------- count groups

    def _count_group(self, group_id: str) -> List[Tuple[int, CountMarker]]:
        members = [
            (page, m)
            for page in self.session.pages_with_markups()
            for m in self.markups(page)
            if isinstance(m, CountMarker) and m.group_id == group_id
        ]
        members.sort(key=lambda item: (item[0], item[1].created_at))
        return members

    def renumber_count_group(self, group_id: str) -> int:
        """Number the markers of a group 1..n in page then creation order."""
        self.session.ensure_idle()
        numbering = {m.id: index for index, (_, m) in enumerate(self._count_group(group_id), start=1)}
        if not numbering:
            return 0
        changes: Dict[int, Tuple[Any, ...]] = {}
        for page in {p for p, _ in self._count_group(group_id)}:
            current = self.markups(page)
            renumbered = tuple(
                m.model_copy(update={"number": numbering[m.id]}) if m.id in numbering and m.number != numbering[m.id] else m
                for m in current
            )
            if renumbered != current:
                changes[page] = renumbered
        if changes:
            self._push_multi_page(changes, "Renumbered count group")
            for page, markups in changes.items():
                self._commit(page, markups)
        for markup_id in numbering:
            self.links.update_count_value(markup_id, 1.0)
        return len(numbering)

    def split_count_group(self, markup_id: str) -> Optional[str]:
        """Move a marker and every later marker of its group into a new group."""
        self.session.ensure_idle()
        found = self.session.find_markup(markup_id)
        if found is None or not isinstance(found[1], CountMarker):
            raise MarkupNotFoundError(f"Count marker {markup_id} not found", {"markup_id": markup_id})
        group_id = found[1].group_id
        members = self._count_group(group_id)
        index = next(i for i, (_, m) in enumerate(members) if m.id == markup_id)
        moved = {m.id for _, m in members[index:]}
        new_group_id = f"{group_id}-split-{uuid4().hex[:8]}"
        changes = {
            page: tuple(m.model_copy(update={"group_id": new_group_id}) if m.id in moved else m for m in self.markups(page))
            for page in {p for p, m in members if m.id in moved}
        }
        self._push_multi_page(changes, "Split count group")
        for page, markups in changes.items():
            self._commit(page, markups)
        return new_group_id

    # ------------------------------------------------------------ history

    def _replay(self, step: HistoryStep, *, forward: bool) -> HistoryStep:
        replayed = []
        for entry in step:
            source, target = (entry.before, entry.after) if forward else (entry.after, entry.before)
            removed = _diff(source, target)
            added = _diff(target, source)

            if removed:
                removed_ids = {m.id for m in removed}
                captured = self._capture_links(removed)
                kept = {link.markup_id for _, link in captured}
                entry = entry.with_links(
                    tuple(d for d in entry.linked_measurements if d[1].markup_id not in removed_ids) + captured,
                    tuple(i for i in entry.unlinked_ids if i not in removed_ids)
                    + tuple(m.id for m in removed if m.id not in kept),
                )

            for markup in removed:
                self.links.unlink_by_markup_id(markup.id)

            self.set_markups_for_page(entry.page, target)

            if added:
                self._relink(entry, added)
            replayed.append(entry)
        return tuple(replayed)

    def _relink(self, entry: HistoryEntry, added: Sequence[Any]) -> None:
        added_ids = {m.id for m in added}
        captured = {link.markup_id: (product_id, link) for product_id, link in entry.linked_measurements}
        for markup in added:
            if markup.id in captured:
                product_id, link = captured[markup.id]
                self.links.relink(product_id, link)
                continue
            if markup.id in entry.unlinked_ids:
                continue
            rebuilt = build_measurement_from_markup(markup, self.session.id)
            if rebuilt is not None:
                self.links.relink(*rebuilt)
        stray = set(captured) - added_ids
        if stray:
            logger.debug("Ignoring {} captured link(s) for markups not restored by this step", len(stray))

    def undo(self) -> Optional[HistoryStep]:
        """Undo the newest step; None when there is nothing to undo."""
        self.session.ensure_idle()
        step = self.history.undo()
        if step is None:
            return None
        replayed = self._replay(tuple(reversed(step)), forward=False)
        self.history.replace_top_future(tuple(reversed(replayed)))
        logger.debug("Undo: {}", "; ".join(e.description for e in step))
        return step

    def redo(self) -> Optional[HistoryStep]:
        self.session.ensure_idle()
        step = self.history.redo()
        if step is None:
            return None
        replayed = self._replay(step, forward=True)
        self.history.replace_top_past(replayed)
        logger.debug("Redo: {}", "; ".join(e.description for e in step))
        return step


__all__ = ["MarkupStore"]
