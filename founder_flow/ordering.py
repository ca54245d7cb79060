"""Ordering engine for roadmap milestones.

A roadmap's milestones are partitioned into buckets; inside every non-empty
bucket ``sort_index`` runs ``0..n-1``. Mutations are planned on a *board*
(bucket -> ordered milestone ids) rebuilt from a fresh read inside the same
transaction that writes the result, so a concurrent request can never make the
engine compute positions from stale data.

Deleting a milestone leaves a gap in its bucket; the next move or reorder that
touches the bucket closes it.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import NotFoundError, ValidationError
from .schemas import (
    Bucket,
    Milestone,
    MilestoneDraft,
    MilestonePosition,
    MilestoneUpdate,
    Roadmap,
    RoadmapLayout,
    RoadmapView,
)
from .store import DurableStore, StoreTransaction

logger = logging.getLogger(__name__)

Board = Dict[Bucket, List[int]]

# Where milestones land when a roadmap switches layout.
LAYOUT_REMAP: Dict[Bucket, Bucket] = {
    Bucket.NOW: Bucket.Q1,
    Bucket.NEXT: Bucket.Q2,
    Bucket.LATER: Bucket.Q3,
    Bucket.Q1: Bucket.NOW,
    Bucket.Q2: Bucket.NEXT,
    Bucket.Q3: Bucket.LATER,
    Bucket.Q4: Bucket.LATER,
}

_ALL_BUCKETS: List[Bucket] = list(Bucket)


# ---------------------------------------------------------------------------
# Board planning (pure)
# ---------------------------------------------------------------------------


def build_board(milestones: Iterable[Milestone]) -> Board:
    """Group milestone ids by bucket, ordered by ``(sort_index, id)``."""

    board: Board = {}
    for milestone in sorted(milestones, key=lambda m: (m.sort_index, m.id)):
        board.setdefault(milestone.bucket, []).append(milestone.id)
    return board


def copy_board(board: Board) -> Board:
    return {bucket: list(ids) for bucket, ids in board.items()}


def locate(board: Board, milestone_id: int) -> Bucket:
    for bucket, ids in board.items():
        if milestone_id in ids:
            return bucket
    raise NotFoundError("Milestone", milestone_id)


def array_move(items: Sequence[int], old_index: int, new_index: int) -> List[int]:
    """Return a copy of *items* with the element at *old_index* moved to *new_index*."""

    moved = list(items)
    moved.insert(new_index, moved.pop(old_index))
    return moved


def plan_move(
    board: Board,
    milestone_id: int,
    target_bucket: Bucket,
    target_index: Optional[int] = None,
) -> Board:
    """Return a new board with *milestone_id* placed at *target_index*.

    The index is interpreted against the target bucket with the moving
    milestone already taken out, so for a same-bucket move it is the final
    position. ``None`` appends at the end.
    """

    planned = copy_board(board)
    source_bucket = locate(planned, milestone_id)
    planned[source_bucket].remove(milestone_id)
    target = planned.setdefault(target_bucket, [])

    if target_index is None:
        target_index = len(target)
    if not 0 <= target_index <= len(target):
        raise ValidationError(
            f"Target index {target_index} is out of range for bucket '{target_bucket.value}'",
            details={
                "milestone_id": milestone_id,
                "bucket": target_bucket.value,
                "target_index": target_index,
                "max_index": len(target),
            },
        )
    target.insert(target_index, milestone_id)
    return planned


def plan_move_onto(board: Board, milestone_id: int, over_milestone_id: int) -> Board:
    """Drop *milestone_id* onto another milestone: insert just before it."""

    if milestone_id == over_milestone_id:
        return copy_board(board)
    planned = copy_board(board)
    planned[locate(planned, milestone_id)].remove(milestone_id)
    over_bucket = locate(planned, over_milestone_id)
    planned[over_bucket].insert(planned[over_bucket].index(over_milestone_id), milestone_id)
    return planned


def board_positions(board: Board, buckets: Optional[Iterable[Bucket]] = None) -> List[MilestonePosition]:
    """Number every listed bucket of *board* contiguously from zero."""

    selected = list(buckets) if buckets is not None else list(board)
    positions = []
    for bucket in selected:
        for index, milestone_id in enumerate(board.get(bucket, [])):
            positions.append(MilestonePosition(id=milestone_id, bucket=bucket, sort_index=index))
    return positions


def changed_positions(
    current: Mapping[int, Milestone], positions: Iterable[MilestonePosition]
) -> List[MilestonePosition]:
    """Keep only the positions that differ from what is stored."""

    changed = []
    for position in positions:
        milestone = current[position.id]
        if milestone.bucket != position.bucket or milestone.sort_index != position.sort_index:
            changed.append(position)
    return changed


def ordered_for_display(milestones: Iterable[Milestone]) -> List[Milestone]:
    def key(milestone: Milestone) -> tuple:
        return (_ALL_BUCKETS.index(milestone.bucket), milestone.sort_index, milestone.id)

    return sorted(milestones, key=key)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _require_bucket(roadmap: Roadmap, bucket: Bucket, milestone_id: Optional[int] = None) -> None:
    legal = roadmap.layout.buckets
    if bucket not in legal:
        details = {
            "bucket": bucket.value,
            "layout": roadmap.layout.value,
            "allowed": [b.value for b in legal],
        }
        if milestone_id is not None:
            details["milestone_id"] = milestone_id
        raise ValidationError(
            f"Bucket '{bucket.value}' is not part of the '{roadmap.layout.value}' layout",
            details=details,
        )


class OrderingEngine:
    """Create, edit and reorder roadmap milestones with contiguous positions."""

    def __init__(self, store: DurableStore) -> None:
        self._store = store

    # Reads ------------------------------------------------------------------

    def get_roadmap(self, roadmap_id: int) -> RoadmapView:
        with self._store.transaction() as tx:
            roadmap = tx.get_roadmap(roadmap_id)
            if roadmap is None:
                raise NotFoundError("Roadmap", roadmap_id)
            return self._view(tx, roadmap)

    def get_roadmap_for_session(self, session_id: str) -> RoadmapView:
        with self._store.transaction() as tx:
            roadmap = tx.get_roadmap_for_session(session_id)
            if roadmap is None:
                raise NotFoundError("Roadmap for session", session_id)
            return self._view(tx, roadmap)

    # Roadmap lifecycle ------------------------------------------------------

    def seed(
        self,
        session_id: str,
        drafts: Sequence[MilestoneDraft],
        name: str = "Problem-Solution Validation",
        layout: RoadmapLayout = RoadmapLayout.NOW_NEXT_LATER,
    ) -> RoadmapView:
        """Create the session's roadmap and its initial milestones in one go.

        Seeding is not mergeable: a session that already has a roadmap is a
        conflict. Positions follow input order within each bucket.
        """

        layout = RoadmapLayout(layout)
        legal = layout.buckets
        for index, draft in enumerate(drafts):
            if draft.bucket not in legal:
                raise ValidationError(
                    f"Bucket '{draft.bucket.value}' is not part of the '{layout.value}' layout",
                    details={"index": index, "title": draft.title, "bucket": draft.bucket.value},
                )

        with self._store.transaction() as tx:
            if tx.get_session(session_id) is None:
                raise NotFoundError("Session", session_id)
            roadmap = tx.insert_roadmap(session_id, name, layout)
            counters: Dict[Bucket, int] = {}
            for draft in drafts:
                position = counters.get(draft.bucket, 0)
                counters[draft.bucket] = position + 1
                fields = draft.model_dump(exclude={"sort_index"})
                fields["sort_index"] = position
                tx.insert_milestone(roadmap.id, fields)
            view = self._view(tx, roadmap)

        logger.info(
            "Seeded roadmap %s for session %s with %d milestones",
            roadmap.id,
            session_id,
            len(drafts),
            extra={"roadmap_id": roadmap.id, "session_id": session_id},
        )
        return view

    def update_roadmap(
        self,
        roadmap_id: int,
        name: Optional[str] = None,
        layout: Optional[RoadmapLayout] = None,
    ) -> RoadmapView:
        """Rename a roadmap and/or switch its layout, remapping buckets."""

        with self._store.transaction() as tx:
            roadmap = self._lock_roadmap(tx, roadmap_id)
            changes = {}
            if name is not None:
                changes["name"] = name
            if layout is not None and RoadmapLayout(layout) != roadmap.layout:
                new_layout = RoadmapLayout(layout)
                changes["layout"] = new_layout
                milestones = tx.list_milestones(roadmap_id)
                board = build_board(milestones)
                remapped: Board = {}
                for bucket in _ALL_BUCKETS:
                    for milestone_id in board.get(bucket, []):
                        remapped.setdefault(LAYOUT_REMAP[bucket], []).append(milestone_id)
                current = {m.id: m for m in milestones}
                tx.apply_positions(changed_positions(current, board_positions(remapped)))
                logger.info(
                    "Roadmap %s layout %s -> %s",
                    roadmap_id,
                    roadmap.layout.value,
                    new_layout.value,
                    extra={"roadmap_id": roadmap_id},
                )
            if changes:
                roadmap = tx.update_roadmap(roadmap_id, **changes)
            return self._view(tx, roadmap)

    def delete_roadmap(self, roadmap_id: int) -> None:
        with self._store.transaction() as tx:
            self._lock_roadmap(tx, roadmap_id)
            tx.delete_roadmap(roadmap_id)
        logger.info("Deleted roadmap %s", roadmap_id, extra={"roadmap_id": roadmap_id})

    # Milestones -------------------------------------------------------------

    def create_milestone(self, roadmap_id: int, draft: MilestoneDraft) -> Milestone:
        """Add a milestone at the end of its bucket, or at ``draft.sort_index``."""

        with self._store.transaction() as tx:
            roadmap = self._lock_roadmap(tx, roadmap_id)
            _require_bucket(roadmap, draft.bucket)
            milestones = tx.list_milestones(roadmap_id)
            board = build_board(milestones)
            siblings = board.get(draft.bucket, [])

            index = len(siblings) if draft.sort_index is None else draft.sort_index
            if index > len(siblings):
                raise ValidationError(
                    f"Sort index {index} is out of range for bucket '{draft.bucket.value}'",
                    details={"bucket": draft.bucket.value, "sort_index": index, "max_index": len(siblings)},
                )

            shifted = [
                MilestonePosition(id=milestone_id, bucket=draft.bucket, sort_index=i if i < index else i + 1)
                for i, milestone_id in enumerate(siblings)
            ]
            tx.apply_positions(changed_positions({m.id: m for m in milestones}, shifted))

            fields = draft.model_dump(exclude={"sort_index"})
            fields["sort_index"] = index
            milestone = tx.insert_milestone(roadmap_id, fields)

        logger.info(
            "Created milestone %s in %s[%d]",
            milestone.id,
            milestone.bucket.value,
            milestone.sort_index,
            extra={"roadmap_id": roadmap_id, "milestone_id": milestone.id},
        )
        return milestone

    def update_milestone(self, milestone_id: int, changes: MilestoneUpdate) -> Milestone:
        """Edit milestone content; bucket or position changes go through a move."""

        content = changes.model_dump(exclude_unset=True, exclude={"bucket", "sort_index"})
        for required in ("title", "category", "status", "dependencies"):
            if content.get(required, ...) is None:
                del content[required]
        with self._store.transaction() as tx:
            milestone = self._require_milestone(tx, milestone_id)
            roadmap = self._lock_roadmap(tx, milestone.roadmap_id)

            target_bucket = changes.bucket or milestone.bucket
            if target_bucket != milestone.bucket or changes.sort_index is not None:
                self._move(tx, roadmap, milestone_id, target_bucket, changes.sort_index)
            if content:
                tx.update_milestone(milestone_id, **content)
            return self._require_milestone(tx, milestone_id)

    def remove(self, milestone_id: int) -> None:
        """Delete a milestone. Siblings keep their indices until the next reorder."""

        with self._store.transaction() as tx:
            milestone = self._require_milestone(tx, milestone_id)
            self._lock_roadmap(tx, milestone.roadmap_id)
            tx.delete_milestone(milestone_id)
        logger.info(
            "Deleted milestone %s from %s",
            milestone_id,
            milestone.bucket.value,
            extra={"roadmap_id": milestone.roadmap_id, "milestone_id": milestone_id},
        )

    # Reordering -------------------------------------------------------------

    def move_to_bucket(
        self,
        milestone_id: int,
        target_bucket: Bucket,
        target_index: Optional[int] = None,
    ) -> RoadmapView:
        """Move one milestone within or across buckets as a single atomic write."""

        target_bucket = Bucket(target_bucket)
        with self._store.transaction() as tx:
            milestone = self._require_milestone(tx, milestone_id)
            roadmap = self._lock_roadmap(tx, milestone.roadmap_id)
            self._move(tx, roadmap, milestone_id, target_bucket, target_index)
            return self._view(tx, roadmap)

    def move_onto(self, milestone_id: int, over_milestone_id: int) -> RoadmapView:
        """Drop a milestone onto another one; it lands immediately before it."""

        with self._store.transaction() as tx:
            milestone = self._require_milestone(tx, milestone_id)
            roadmap = self._lock_roadmap(tx, milestone.roadmap_id)
            milestones = tx.list_milestones(roadmap.id)
            current = {m.id: m for m in milestones}
            over = current.get(over_milestone_id)
            if over is None:
                raise ValidationError(
                    f"Milestone {over_milestone_id} is not on roadmap {roadmap.id}",
                    details={"milestone_id": over_milestone_id, "roadmap_id": roadmap.id},
                )
            board = build_board(milestones)
            planned = plan_move_onto(board, milestone_id, over_milestone_id)
            self._write(tx, roadmap, current, board_positions(planned, {milestone.bucket, over.bucket}))
            return self._view(tx, roadmap)

    def reorder_whole(self, roadmap_id: int, assignments: Sequence[MilestonePosition]) -> RoadmapView:
        """Apply a caller-supplied ``(id, bucket, sort_index)`` batch atomically.

        The batch is validated against the roadmap (known ids, legal buckets,
        no duplicates). Afterwards every bucket is renumbered ``0..n-1`` in the
        order the batch implies; assigned milestones win ties against ones the
        batch did not mention.
        """

        with self._store.transaction() as tx:
            roadmap = self._lock_roadmap(tx, roadmap_id)
            milestones = tx.list_milestones(roadmap_id)
            current = {m.id: m for m in milestones}

            assigned: Dict[int, tuple] = {}
            for order, entry in enumerate(assignments):
                if entry.id not in current:
                    raise ValidationError(
                        f"Milestone {entry.id} is not on roadmap {roadmap_id}",
                        details={"milestone_id": entry.id, "bucket": entry.bucket.value},
                    )
                if entry.id in assigned:
                    raise ValidationError(
                        f"Milestone {entry.id} appears more than once in the batch",
                        details={"milestone_id": entry.id, "bucket": entry.bucket.value},
                    )
                _require_bucket(roadmap, entry.bucket, entry.id)
                assigned[entry.id] = (entry.bucket, entry.sort_index, 0, order)

            keyed = []
            for milestone in milestones:
                bucket, sort_index, rank, tiebreak = assigned.get(
                    milestone.id, (milestone.bucket, milestone.sort_index, 1, milestone.id)
                )
                keyed.append(((sort_index, rank, tiebreak), bucket, milestone.id))

            planned: Board = {}
            for _, bucket, milestone_id in sorted(keyed, key=lambda item: item[0]):
                planned.setdefault(bucket, []).append(milestone_id)

            self._write(tx, roadmap, current, board_positions(planned))
            return self._view(tx, roadmap)

    # Internals --------------------------------------------------------------

    def _lock_roadmap(self, tx: StoreTransaction, roadmap_id: int) -> Roadmap:
        roadmap = tx.get_roadmap(roadmap_id, lock=True)
        if roadmap is None:
            raise NotFoundError("Roadmap", roadmap_id)
        return roadmap

    def _require_milestone(self, tx: StoreTransaction, milestone_id: int) -> Milestone:
        milestone = tx.get_milestone(milestone_id)
        if milestone is None:
            raise NotFoundError("Milestone", milestone_id)
        return milestone

    def _move(
        self,
        tx: StoreTransaction,
        roadmap: Roadmap,
        milestone_id: int,
        target_bucket: Bucket,
        target_index: Optional[int],
    ) -> None:
        _require_bucket(roadmap, target_bucket, milestone_id)
        # Re-read under the roadmap lock; positions are never derived from
        # whatever the client last saw.
        milestones = tx.list_milestones(roadmap.id)
        current = {m.id: m for m in milestones}
        source_bucket = current[milestone_id].bucket
        board = build_board(milestones)
        planned = plan_move(board, milestone_id, target_bucket, target_index)
        # Only rows whose position differs are written, so a move that keeps
        # the order of a gap-free bucket writes nothing.
        self._write(tx, roadmap, current, board_positions(planned, {source_bucket, target_bucket}))

    def _write(
        self,
        tx: StoreTransaction,
        roadmap: Roadmap,
        current: Mapping[int, Milestone],
        positions: Iterable[MilestonePosition],
    ) -> None:
        batch = changed_positions(current, positions)
        if not batch:
            return
        tx.apply_positions(batch)
        logger.info(
            "Reordered roadmap %s: %d milestone(s) repositioned",
            roadmap.id,
            len(batch),
            extra={"roadmap_id": roadmap.id},
        )

    def _view(self, tx: StoreTransaction, roadmap: Roadmap) -> RoadmapView:
        return RoadmapView(roadmap=roadmap, milestones=ordered_for_display(tx.list_milestones(roadmap.id)))
