"""Membership changes: simple and joint-consensus transitions of a configuration."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Iterable

from .types import ConfChangeSingle, ConfChangeType, ConfState, RaftError


class ConfChangeError(RaftError):
    """A configuration change was refused."""


@dataclass
class Progress:
    """What the leader knows about one peer's log."""

    match: int = 0
    next: int = 0
    is_learner: bool = False
    recent_active: bool = False


def _majority_str(ids: Iterable[int]) -> str:
    return "(" + " ".join(str(i) for i in sorted(ids)) + ")"


@dataclass
class TrackerConfig:
    """Voters (incoming and, while joint, outgoing) and learners of a cluster.

    ``learners_next`` holds peers that become learners once the joint
    configuration is left; it is only ever non-empty while joint.
    """

    incoming: set[int] = field(default_factory=set)
    outgoing: set[int] = field(default_factory=set)
    learners: set[int] = field(default_factory=set)
    learners_next: set[int] = field(default_factory=set)
    auto_leave: bool = False

    @property
    def joint(self) -> bool:
        return bool(self.outgoing)

    def voter_ids(self) -> set[int]:
        return self.incoming | self.outgoing

    def clone(self) -> TrackerConfig:
        return TrackerConfig(
            incoming=set(self.incoming),
            outgoing=set(self.outgoing),
            learners=set(self.learners),
            learners_next=set(self.learners_next),
            auto_leave=self.auto_leave,
        )

    def __str__(self) -> str:
        voters = _majority_str(self.incoming)
        if self.outgoing:
            voters += "&&" + _majority_str(self.outgoing)
        parts = [f"voters={voters}"]
        if self.learners:
            parts.append(f"learners={_majority_str(self.learners)}")
        if self.learners_next:
            parts.append(f"learners_next={_majority_str(self.learners_next)}")
        if self.auto_leave:
            parts.append("autoleave")
        return " ".join(parts)


@dataclass
class ProgressTracker:
    """The active configuration together with per-peer progress."""

    max_inflight: int = 0
    max_inflight_bytes: int = 0
    config: TrackerConfig = field(default_factory=TrackerConfig)
    progress: dict[int, Progress] = field(default_factory=dict)

    def conf_state(self) -> ConfState:
        """The configuration as a :class:`ConfState` with sorted id lists."""
        cfg = self.config
        return ConfState(
            voters=sorted(cfg.incoming),
            learners=sorted(cfg.learners),
            voters_outgoing=sorted(cfg.outgoing),
            learners_next=sorted(cfg.learners_next),
            auto_leave=cfg.auto_leave,
        )


ChangeResult = tuple[TrackerConfig, dict[int, Progress]]


def _check_invariants(cfg: TrackerConfig, prs: dict[int, Progress]) -> None:
    for ids in (cfg.voter_ids(), cfg.learners, cfg.learners_next):
        for node_id in sorted(ids):
            if node_id not in prs:
                raise ConfChangeError(f"no progress for {node_id}")

    # Staged learners were staged only because they are outgoing voters.
    for node_id in sorted(cfg.learners_next):
        if node_id not in cfg.outgoing:
            raise ConfChangeError(f"{node_id} is in LearnersNext, but not Voters[1]")
        if prs[node_id].is_learner:
            raise ConfChangeError(
                f"{node_id} is in LearnersNext, but is already marked as learner"
            )
    for node_id in sorted(cfg.learners):
        if node_id in cfg.outgoing:
            raise ConfChangeError(f"{node_id} is in Learners and Voters[1]")
        if node_id in cfg.incoming:
            raise ConfChangeError(f"{node_id} is in Learners and Voters[0]")
        if not prs[node_id].is_learner:
            raise ConfChangeError(
                f"{node_id} is in Learners, but is not marked as learner"
            )

    if not cfg.joint:
        if cfg.learners_next:
            raise ConfChangeError("cfg.LearnersNext must be nil when not joint")
        if cfg.auto_leave:
            raise ConfChangeError("AutoLeave must be false when not joint")


@dataclass
class Changer:
    """Validates and computes configuration changes without touching the tracker."""

    tracker: ProgressTracker
    last_index: int = 0

    def enter_joint(self, auto_leave: bool, *args: ConfChangeSingle) -> ChangeResult:
        """Copy the incoming voters to the outgoing side and apply ``args`` to the incoming."""
        cfg, prs = self._check_and_copy()
        if cfg.joint:
            raise ConfChangeError("config is already joint")
        if not cfg.incoming:
            # Adding to an empty config is fine, but it cannot become joint.
            raise ConfChangeError("can't make a zero-voter config joint")
        cfg.outgoing = set(cfg.incoming)
        self._apply(cfg, prs, args)
        cfg.auto_leave = auto_leave
        _check_invariants(cfg, prs)
        return cfg, prs

    def leave_joint(self) -> ChangeResult:
        """Drop the outgoing voters and promote staged learners."""
        cfg, prs = self._check_and_copy()
        if not cfg.joint:
            raise ConfChangeError("can't leave a non-joint config")
        for node_id in cfg.learners_next:
            cfg.learners.add(node_id)
            prs[node_id].is_learner = True
        cfg.learners_next = set()

        for node_id in cfg.outgoing:
            if node_id not in cfg.incoming and node_id not in cfg.learners:
                del prs[node_id]
        cfg.outgoing = set()
        cfg.auto_leave = False
        _check_invariants(cfg, prs)
        return cfg, prs

    def simple(self, *args: ConfChangeSingle) -> ChangeResult:
        """Apply changes that alter the incoming voters by at most one."""
        cfg, prs = self._check_and_copy()
        if cfg.joint:
            raise ConfChangeError("can't apply simple config change in joint config")
        self._apply(cfg, prs, args)
        if len(self.tracker.config.incoming ^ cfg.incoming) > 1:
            raise ConfChangeError(
                "more than one voter changed without entering joint config"
            )
        _check_invariants(cfg, prs)
        return cfg, prs

    def _apply(
        self,
        cfg: TrackerConfig,
        prs: dict[int, Progress],
        changes: Iterable[ConfChangeSingle],
    ) -> None:
        for cc in changes:
            if cc.node_id == 0:
                # A zeroed node id marks a change the application chose to skip.
                continue
            if cc.type == ConfChangeType.ADD_NODE:
                self._make_voter(cfg, prs, cc.node_id)
            elif cc.type == ConfChangeType.ADD_LEARNER_NODE:
                self._make_learner(cfg, prs, cc.node_id)
            elif cc.type == ConfChangeType.REMOVE_NODE:
                self._remove(cfg, prs, cc.node_id)
            elif cc.type == ConfChangeType.UPDATE_NODE:
                pass
            else:
                raise ConfChangeError(f"unexpected conf type {int(cc.type)}")
        if not cfg.incoming:
            raise ConfChangeError("removed all voters")

    def _make_voter(self, cfg: TrackerConfig, prs: dict[int, Progress], node_id: int) -> None:
        pr = prs.get(node_id)
        if pr is None:
            self._init_progress(cfg, prs, node_id, is_learner=False)
            return
        pr.is_learner = False
        cfg.learners.discard(node_id)
        cfg.learners_next.discard(node_id)
        cfg.incoming.add(node_id)

    def _make_learner(self, cfg: TrackerConfig, prs: dict[int, Progress], node_id: int) -> None:
        pr = prs.get(node_id)
        if pr is None:
            self._init_progress(cfg, prs, node_id, is_learner=True)
            return
        if pr.is_learner:
            return
        self._remove(cfg, prs, node_id)
        prs[node_id] = pr
        # An outgoing voter cannot also be a learner; stage it until leaving joint.
        if node_id in cfg.outgoing:
            cfg.learners_next.add(node_id)
        else:
            pr.is_learner = True
            cfg.learners.add(node_id)

    def _remove(self, cfg: TrackerConfig, prs: dict[int, Progress], node_id: int) -> None:
        if node_id not in prs:
            return
        cfg.incoming.discard(node_id)
        cfg.learners.discard(node_id)
        cfg.learners_next.discard(node_id)
        if node_id not in cfg.outgoing:
            del prs[node_id]

    def _init_progress(
        self,
        cfg: TrackerConfig,
        prs: dict[int, Progress],
        node_id: int,
        is_learner: bool,
    ) -> None:
        if is_learner:
            cfg.learners.add(node_id)
        else:
            cfg.incoming.add(node_id)
        # New peers count as recently active so quorum checks do not trip early.
        prs[node_id] = Progress(
            match=0,
            next=self.last_index,
            is_learner=is_learner,
            recent_active=True,
        )

    def _check_and_copy(self) -> ChangeResult:
        cfg = self.tracker.config.clone()
        prs = {
            node_id: dataclasses.replace(pr)
            for node_id, pr in self.tracker.progress.items()
        }
        _check_invariants(cfg, prs)
        return cfg, prs


def describe(*args: ConfChangeSingle) -> str:
    """Space-separated ``Type(NodeID)`` for each change."""
    return " ".join(f"{cc.type}({cc.node_id})" for cc in args)