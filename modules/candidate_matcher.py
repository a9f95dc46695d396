"""
Concatenation candidate discovery.

Scans the print queue for Orders that can share one printed package:

    1. Bucket Orders by the printer their Job was sliced for
    2. Per bucket: Orders sharing a Job (same_gcode) and Orders sharing a
       material (same_material)
    3. Every Order asking for more than one copy (self-replication)
    4. If step 2 found nothing, same-material groups across all printers

Proposals are returned in discovery order: step 2, then step 4, then
step 3. Nothing is ranked or persisted; the operator chooses.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from models.concatenation import ConcatenationCandidate, ConcatenationProposal, ProposalType
from models.job import Job
from models.order import QUEUE_STATES, Order
from logging_config import get_logger


logger = get_logger(__name__)

UNKNOWN_PRINTER = "unknown"
UNKNOWN_MATERIAL = "Unknown"
MIXED_PRINTERS = "mixed"


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-") or "none"


def _printer_key(job: Job) -> str:
    return (job.printer or "").strip() or UNKNOWN_PRINTER


def _material_key(job: Job) -> str:
    return (job.material or "").strip() or UNKNOWN_MATERIAL


class CandidateMatcher:
    """
    Group queued Orders into concatenation proposals.

    Args:
        automatic_profile_name: Print profile reported on proposals that mix
            Jobs; those Jobs are expected to be sliced with it
    """

    def __init__(self, automatic_profile_name: str = "AUTO"):
        self.automatic_profile_name = automatic_profile_name

    def find_proposals(self, orders: Iterable[Order], jobs: Dict[int, Job]) -> List[ConcatenationProposal]:
        """
        Proposals for the queue.

        Args:
            orders: Orders to consider; anything outside the queue states
                is ignored
            jobs: Jobs by id, covering every Order's job_id

        Returns:
            Proposals in discovery order
        """
        eligible = []
        for order in orders:
            if order.state not in QUEUE_STATES:
                continue
            if order.job_id not in jobs:
                logger.warning(f"Order {order.id} references unknown job {order.job_id}, skipped")
                continue
            eligible.append(order)

        buckets: "OrderedDict[str, List[Order]]" = OrderedDict()
        for order in eligible:
            buckets.setdefault(_printer_key(jobs[order.job_id]), []).append(order)

        grouped: List[ConcatenationProposal] = []
        for printer, bucket in buckets.items():
            if len(bucket) < 2:
                continue
            grouped.extend(self._same_job_proposals(printer, bucket, jobs))
            grouped.extend(self._same_material_proposals(printer, bucket, jobs))

        fallback: List[ConcatenationProposal] = []
        if not grouped:
            fallback = self._same_material_proposals(None, eligible, jobs)

        replicated = [
            self._self_replication(order, jobs)
            for order in eligible
            if order.quantity > 1
        ]

        proposals = grouped + fallback + replicated
        logger.info(
            f"Found {len(proposals)} proposal(s) over {len(eligible)} order(s): "
            f"{len(grouped)} grouped, {len(fallback)} fallback, {len(replicated)} self-replication"
        )
        return proposals

    # =========================================================================
    # GROUPING RULES
    # =========================================================================

    def _same_job_proposals(self, printer: str, orders: List[Order], jobs: Dict[int, Job]) -> List[ConcatenationProposal]:
        groups: "OrderedDict[int, List[Order]]" = OrderedDict()
        for order in orders:
            groups.setdefault(order.job_id, []).append(order)

        proposals = []
        for job_id, members in groups.items():
            total = sum(o.quantity for o in members)
            if len(members) < 2 or total <= 1:
                continue

            job = jobs[job_id]
            candidate = ConcatenationCandidate(
                order_ids=[o.id for o in members],
                job_ids=[job_id],
                printer=printer,
                material_name=_material_key(job),
                print_settings_name=self.automatic_profile_name,
                total_quantity=total,
                is_same_gcode=True,
            )
            proposals.append(self._proposal(
                f"same_gcode_{job_id}_{_slug(printer)}",
                ProposalType.SAME_GCODE,
                candidate,
                f"{total}x {job.file_name} - {printer}",
                members,
                jobs,
            ))
        return proposals

    def _same_material_proposals(
        self,
        printer: Optional[str],
        orders: List[Order],
        jobs: Dict[int, Job],
    ) -> List[ConcatenationProposal]:
        """
        Same-material groups. ``printer`` None means the groups span printers
        and each reports its common printer, or "mixed".
        """
        groups: "OrderedDict[str, List[Order]]" = OrderedDict()
        for order in orders:
            groups.setdefault(_material_key(jobs[order.job_id]), []).append(order)

        proposals = []
        for material, members in groups.items():
            total = sum(o.quantity for o in members)
            if len(members) < 2 or total <= 1:
                continue

            if printer is None:
                printers = {_printer_key(jobs[o.job_id]) for o in members}
                group_printer = printers.pop() if len(printers) == 1 else MIXED_PRINTERS
                proposal_id = f"same_material_{_slug(material)}_all"
            else:
                group_printer = printer
                proposal_id = f"same_material_{_slug(material)}_{_slug(printer)}"

            job_ids = list(OrderedDict.fromkeys(o.job_id for o in members))
            candidate = ConcatenationCandidate(
                order_ids=[o.id for o in members],
                job_ids=job_ids,
                printer=group_printer,
                material_name=material,
                print_settings_name=self.automatic_profile_name,
                total_quantity=total,
                is_same_gcode=len(job_ids) == 1,
            )
            proposals.append(self._proposal(
                proposal_id,
                ProposalType.SAME_MATERIAL,
                candidate,
                f"{len(members)} different objects - {material} - {group_printer}",
                members,
                jobs,
            ))
        return proposals

    def _self_replication(self, order: Order, jobs: Dict[int, Job]) -> ConcatenationProposal:
        job = jobs[order.job_id]
        printer = _printer_key(job)
        candidate = ConcatenationCandidate(
            order_ids=[order.id],
            job_ids=[order.job_id],
            printer=printer,
            material_name=_material_key(job),
            print_settings_name=self.automatic_profile_name,
            total_quantity=order.quantity,
            is_same_gcode=True,
        )
        return self._proposal(
            f"self_replication_{order.id}",
            ProposalType.SAME_GCODE,
            candidate,
            f"{order.quantity}x {job.file_name} (order {order.id}) - {printer}",
            [order],
            jobs,
        )

    @staticmethod
    def _proposal(
        proposal_id: str,
        proposal_type: ProposalType,
        candidate: ConcatenationCandidate,
        description: str,
        members: List[Order],
        jobs: Dict[int, Job],
    ) -> ConcatenationProposal:
        # Unanalyzed Jobs contribute zero to the estimates
        time = sum((jobs[o.job_id].duration_minutes or 0.0) * o.quantity for o in members)
        material = sum((jobs[o.job_id].weight_grams or 0.0) * o.quantity for o in members)
        return ConcatenationProposal(
            id=proposal_id,
            type=proposal_type,
            candidate=candidate,
            description=description,
            estimated_time=time,
            estimated_material=material,
        )
