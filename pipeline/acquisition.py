"""pipeline.acquisition

Source acquisition: materialize every slot a run needs into its own directory.

* Planning (:func:`plan_test_slots`, :func:`plan_compare_slots`) is pure.
* :func:`materialize` performs one checkout via :mod:`tools.core_git`.
* :func:`acquire_all` runs all slots concurrently. Slots write to disjoint
  directories, so there is no shared state between them. Acquisition is
  all-or-nothing: the first failure cancels the remaining checkouts and the
  whole run aborts with :class:`~pipeline.errors.AcquisitionError`.

Retries are the checkout mechanism's business, not ours.
"""

from __future__ import annotations

import logging
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from pipeline.bindings import BindingInfo
from pipeline.cancel import CancelToken
from pipeline.config import PerfKitConfig
from pipeline.errors import AcquisitionError, RunCancelled
from pipeline.models import (
    SLOT_BINDING,
    SLOT_BRANCH_BINDING,
    SLOT_BRANCH_CORE,
    SLOT_CORE,
    SLOT_PERF_KIT,
    SLOT_TRUNK_BINDING,
    SLOT_TRUNK_CORE,
    MaterializedSource,
    RevisionSet,
    SlotRequest,
)
from tools.core_git import GitError, checkout_ref

logger = logging.getLogger(__name__)


MaterializeFn = Callable[..., MaterializedSource]


# ---------------------------------------------------------------------------
# Planning (pure)
# ---------------------------------------------------------------------------


def plan_test_slots(binding: BindingInfo, revisions: RevisionSet, *, core_repository: str) -> List[SlotRequest]:
    """Slots for the correctness flow: the binding and the candidate core."""
    return [
        SlotRequest(SLOT_BINDING, binding.repository, revisions.branch_binding_ref, include_submodules=True),
        SlotRequest(SLOT_CORE, core_repository, revisions.branch_core_ref),
    ]


def plan_compare_slots(
    binding: BindingInfo,
    revisions: RevisionSet,
    *,
    core_repository: str,
    perf_kit: Optional[PerfKitConfig] = None,
) -> List[SlotRequest]:
    """Slots for the performance flow: trunk and branch pairs, plus the perf kit.

    ``perf_kit=None`` (or a perf kit with a pre-installed ``path``) means the
    toolkit is not checked out.
    """
    slots = [
        SlotRequest(SLOT_TRUNK_BINDING, binding.repository, revisions.trunk_binding_ref, include_submodules=True),
        SlotRequest(SLOT_TRUNK_CORE, core_repository, revisions.trunk_core_ref),
        SlotRequest(SLOT_BRANCH_BINDING, binding.repository, revisions.branch_binding_ref, include_submodules=True),
        SlotRequest(SLOT_BRANCH_CORE, core_repository, revisions.branch_core_ref),
    ]
    if perf_kit is not None and not perf_kit.path:
        slots.append(SlotRequest(SLOT_PERF_KIT, perf_kit.repository, perf_kit.ref, include_submodules=True))
    return slots


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def materialize(
    request: SlotRequest,
    workdir: Path,
    *,
    token: Optional[str] = None,
    cancel: Optional[CancelToken] = None,
) -> MaterializedSource:
    """Check out one slot into ``<workdir>/<slot>``."""
    dest = Path(workdir) / request.slot
    if cancel is not None:
        cancel.raise_if_cancelled(f"checkout of {request.slot}")
    try:
        commit = checkout_ref(
            request.repository,
            request.ref,
            dest,
            token=token,
            include_submodules=request.include_submodules,
            cancel=cancel,
        )
    except (GitError, OSError) as e:
        if cancel is not None and cancel.cancelled:
            raise RunCancelled(f"Checkout of {request.slot} cancelled: {cancel.reason}") from e
        raise AcquisitionError(
            f"Could not check out {request.repository}@{request.ref} for slot {request.slot}: {e}",
            slot=request.slot,
        ) from e

    print(f"  📥 {request.slot:<15} {request.repository}@{request.ref} -> {commit[:12]}")
    return MaterializedSource(
        slot=request.slot,
        path=dest.resolve(),
        repository=request.repository,
        ref=request.ref,
        commit=commit,
    )


def acquire_all(
    requests: Sequence[SlotRequest],
    workdir: Path,
    *,
    token: Optional[str] = None,
    max_workers: int = 4,
    cancel: Optional[CancelToken] = None,
    materialize_fn: MaterializeFn = materialize,
) -> Dict[str, MaterializedSource]:
    """Materialize every slot concurrently; all-or-nothing."""
    slots = [r.slot for r in requests]
    if len(set(slots)) != len(slots):
        raise AcquisitionError(f"Duplicate slots requested: {slots}")
    if not requests:
        return {}

    workdir = Path(workdir)
    try:
        workdir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise AcquisitionError(f"Cannot create working directory {workdir}: {e}") from e

    # Siblings are cancelled through a child token on the first failure.
    local = CancelToken(parent=cancel)
    out: Dict[str, MaterializedSource] = {}
    first_error: Optional[AcquisitionError] = None

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(requests))), thread_name_prefix="acquire") as pool:
        futures = {
            pool.submit(materialize_fn, req, workdir, token=token, cancel=local): req for req in requests
        }
        for fut in as_completed(futures):
            req = futures[fut]
            try:
                out[req.slot] = fut.result()
            except AcquisitionError as e:
                if first_error is None:
                    first_error = e
                    local.cancel(f"slot {req.slot} failed")
                    for other in futures:
                        other.cancel()
            except (RunCancelled, CancelledError):
                logger.debug("checkout of %s cancelled", req.slot)

    if first_error is not None:
        raise first_error
    if cancel is not None:
        cancel.raise_if_cancelled("override")
    missing = [s for s in slots if s not in out]
    if missing:
        raise AcquisitionError(f"Slots were not materialized: {', '.join(missing)}")
    return out
