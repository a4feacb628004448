"""Rebuilding a tracker configuration from a recorded :class:`ConfState`."""

from __future__ import annotations

import dataclasses
from typing import Callable

from .confchange import ChangeResult, Changer, ProgressTracker
from .types import ConfChangeSingle, ConfChangeType, ConfState

_Operation = Callable[[Changer], ChangeResult]


def to_conf_change_single(
    conf_state: ConfState,
) -> tuple[list[ConfChangeSingle], list[ConfChangeSingle]]:
    """Split a ConfState into the changes building its outgoing and incoming configs.

    Applying the first list to an empty configuration yields the outgoing
    voters as a plain configuration; applying the second list on top of that
    while entering a joint state yields the described configuration.
    """
    outgoing = [
        ConfChangeSingle(ConfChangeType.ADD_NODE, node_id)
        for node_id in conf_state.voters_outgoing
    ]
    incoming = [
        ConfChangeSingle(ConfChangeType.REMOVE_NODE, node_id)
        for node_id in conf_state.voters_outgoing
    ]
    incoming.extend(
        ConfChangeSingle(ConfChangeType.ADD_NODE, node_id)
        for node_id in conf_state.voters
    )
    incoming.extend(
        ConfChangeSingle(ConfChangeType.ADD_LEARNER_NODE, node_id)
        for node_id in conf_state.learners
    )
    # Learners-to-be that are still voters in the outgoing configuration.
    incoming.extend(
        ConfChangeSingle(ConfChangeType.ADD_LEARNER_NODE, node_id)
        for node_id in conf_state.learners_next
    )
    return outgoing, incoming


def _chain(changer: Changer, operations: list[_Operation]) -> ChangeResult:
    for operation in operations:
        cfg, prs = operation(changer)
        changer.tracker.config = cfg
        changer.tracker.progress = prs
    return changer.tracker.config, changer.tracker.progress


def _simple_op(cc: ConfChangeSingle) -> _Operation:
    return lambda chg: chg.simple(cc)


def restore(changer: Changer, conf_state: ConfState) -> ChangeResult:
    """Enact ``conf_state`` starting from the (empty) configuration of ``changer``.

    The given changer is left untouched; the resulting configuration and
    progress map are returned. Raises ConfChangeError if a step is refused.
    """
    outgoing, incoming = to_conf_change_single(conf_state)

    if not outgoing:
        operations = [_simple_op(cc) for cc in incoming]
    else:
        # Build the outgoing voters as the active config, then rotate them out
        # by entering the joint state with the incoming changes.
        operations = [_simple_op(cc) for cc in outgoing]
        auto_leave = conf_state.auto_leave
        operations.append(lambda chg: chg.enter_joint(auto_leave, *incoming))

    tracker = changer.tracker
    work = Changer(
        tracker=ProgressTracker(
            max_inflight=tracker.max_inflight,
            max_inflight_bytes=tracker.max_inflight_bytes,
            config=tracker.config.clone(),
            progress={
                node_id: dataclasses.replace(pr)
                for node_id, pr in tracker.progress.items()
            },
        ),
        last_index=changer.last_index,
    )
    return _chain(work, operations)