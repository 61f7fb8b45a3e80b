"""
Hero health snapshots for Battlegrounds damage attribution.

A HealthSnapshot freezes one player's hero health at a single instant
(shop phase start, combat phase start). Two snapshots of the same player
taken a turn apart are what the correlator diffs to work out who won the
fight and by how much.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from ..host import Entity, GameTag


@dataclass(frozen=True)
class HealthSnapshot:
    """
    Immutable per-player health reading.

    Armor soaks damage before health does, and DAMAGE is the amount already
    removed from the base health, so the effective total is
    ``health + armor - damage``.
    """

    player_id: int
    health: int = 0
    armor: int = 0
    damage: int = 0

    @property
    def total_health(self) -> int:
        """Effective remaining health including armor."""
        return self.health + self.armor - self.damage

    @classmethod
    def from_entity(cls, entity: Entity) -> "HealthSnapshot":
        """Read the health tags off a leaderboard hero entity."""
        return cls(
            player_id=entity.get_tag(GameTag.PLAYER_ID),
            health=entity.get_tag(GameTag.HEALTH),
            armor=entity.get_tag(GameTag.ARMOR),
            damage=entity.get_tag(GameTag.DAMAGE),
        )


def snapshot_healths(entities: Optional[Iterable[Optional[Entity]]]) -> List[HealthSnapshot]:
    """
    Produce one HealthSnapshot per entity.

    Missing input is treated as absence: ``None`` yields an empty list and
    ``None`` members are skipped.
    """
    if entities is None:
        return []
    return [HealthSnapshot.from_entity(entity) for entity in entities if entity is not None]


def find_snapshot(snapshots: Iterable[HealthSnapshot],
                  player_id: Union[int, str, None]) -> Optional[HealthSnapshot]:
    """Look up a player's snapshot; ids may arrive as int (tags) or str (log/opponent ids)."""
    if player_id is None:
        return None
    wanted = str(player_id)
    for snapshot in snapshots:
        if str(snapshot.player_id) == wanted:
            return snapshot
    return None
