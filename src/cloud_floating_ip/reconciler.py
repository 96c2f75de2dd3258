"""
Route Set Reconciliation for Floating IP Ownership

This module holds the provider-independent part of floating IP management:
classifying the routes to the floating IP found in a set of route tables
against the desired target, and converging them with the minimal set of
mutations. Provider adapters (aws.py, gcp.py) supply the table snapshots and
implement the RouteApplier primitives; everything else happens here.

Route States:
    Each table in the reconciliation filter is classified independently:
    - ABSENT: no route to the floating IP destination in the table
    - WRONG_TARGET: a route exists but targets another endpoint/instance
    - CORRECT_TARGET: the route targets our endpoint or our instance

Operations:
    - status: owner iff every filtered table is CORRECT_TARGET
    - preempt: CORRECT_TARGET -> nothing, ABSENT -> create,
      WRONG_TARGET -> replace (atomic) or delete-then-insert
    - destroy: ABSENT -> nothing, otherwise delete

Delete-then-insert:
    Providers without an atomic route replacement primitive (GCE) replace a
    route by deleting it and inserting the new one. Between both calls the
    destination has no route at all and traffic to the floating IP is
    dropped. This window is accepted; it is surfaced as the distinct
    DELETE_THEN_INSERT action kind and logged as a warning when applied.

Failure Semantics:
    Tables are processed strictly one after another. The first failing
    mutation aborts the loop and is raised as ProviderAPIError naming the
    table. Tables mutated before the failure stay mutated: nothing is
    rolled back, the caller is expected to re-run the operation.

Dry-Run:
    Classification always reads real provider state. Under dry-run every
    mutation is reported (logged, structured event with SKIPPED result,
    returned as an unapplied RouteAction) and the provider call is skipped.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .endpoint import NetworkEndpoint
from .exceptions import EmptyTableSetAfterFilter, ProviderAPIError
from .structured_events import ActionResult, StructuredEventLogger

logger = logging.getLogger(os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP"))


class RouteState(Enum):
    ABSENT = "absent"
    WRONG_TARGET = "wrong_target"
    CORRECT_TARGET = "correct_target"


class ActionKind(Enum):
    CREATE = "create"
    REPLACE = "replace"
    DELETE_THEN_INSERT = "delete_then_insert"
    DELETE = "delete"


@dataclass(frozen=True)
class RouteRecord:
    """
    A route to one destination in one table.

    targets holds every reference the provider reports for the route's next
    hop (an AWS route may carry both InstanceId and NetworkInterfaceId).
    """
    destination: str
    targets: Tuple[str, ...] = ()
    name: Optional[str] = None


@dataclass(frozen=True)
class RouteTableView:
    """Snapshot of a provider routing container."""
    table_id: str
    records: Tuple[RouteRecord, ...] = ()
    main: bool = False

    def __post_init__(self):
        seen = set()
        for record in self.records:
            if record.destination in seen:
                raise ValueError(f"Duplicate route to {record.destination} in table {self.table_id}")
            seen.add(record.destination)

    def record_for(self, destination: str) -> Optional[RouteRecord]:
        for record in self.records:
            if record.destination == destination:
                return record
        return None

    def with_record(self, record: RouteRecord) -> 'RouteTableView':
        others = tuple(r for r in self.records if r.destination != record.destination)
        return replace(self, records=others + (record,))

    def without_destination(self, destination: str) -> 'RouteTableView':
        return replace(self, records=tuple(r for r in self.records if r.destination != destination))


class ReconciliationFilter:
    """
    Selects the route tables eligible for reconciliation.

    Tables associated as main table are dropped when ignore_main is set, then
    the remaining tables are restricted to allow_list when it is non-empty.
    An empty selection is a configuration error: reporting "owner" or doing
    nothing over zero tables would hide a misconfiguration.
    """

    def __init__(self, ignore_main: bool = False, allow_list: Iterable[str] = ()):
        self.ignore_main = ignore_main
        self.allow_list = tuple(allow_list)

    def apply(self, tables: Sequence[RouteTableView]) -> List[RouteTableView]:
        selected = list(tables)
        if self.ignore_main:
            selected = [t for t in selected if not t.main]
        if self.allow_list:
            known = {t.table_id for t in tables}
            for table_id in self.allow_list:
                if table_id not in known:
                    logger.warning(f"Route table {table_id} not found, ignoring it")
            selected = [t for t in selected if t.table_id in self.allow_list]

        if not selected:
            reasons = []
            if self.ignore_main:
                reasons.append("main tables ignored")
            if self.allow_list:
                reasons.append(f"allowed tables: {', '.join(self.allow_list)}")
            detail = f" ({'; '.join(reasons)})" if reasons else ""
            raise EmptyTableSetAfterFilter(
                f"No route table left to manage among {len(tables)} table(s){detail}"
            )
        return selected


@dataclass
class RouteAction:
    """A route mutation planned (and possibly applied) on one table."""
    table_id: str
    kind: ActionKind
    destination: str
    target: Optional[str] = None
    previous_targets: Tuple[str, ...] = ()
    applied: bool = False

    def describe(self) -> str:
        if self.kind is ActionKind.CREATE:
            return f"Creating route to {self.destination} via {self.target} in table {self.table_id}"
        if self.kind is ActionKind.REPLACE:
            return f"Replacing route to {self.destination} via {self.target} in table {self.table_id}"
        if self.kind is ActionKind.DELETE_THEN_INSERT:
            return (f"Deleting then re-creating route to {self.destination} via {self.target} "
                    f"in table {self.table_id}")
        return f"Deleting route to {self.destination} from {self.table_id} table"


class RouteApplier(ABC):
    """Mutation primitives a provider adapter exposes to the reconciler."""

    @abstractmethod
    def create_route(self, table: RouteTableView, destination: str, endpoint: NetworkEndpoint) -> None:
        ...

    @abstractmethod
    def delete_route(self, table: RouteTableView, destination: str) -> None:
        ...


class AtomicReplaceApplier(RouteApplier):
    """
    A RouteApplier that can swap a route's target in a single call.

    The reconciler plans REPLACE for appliers of this kind and
    DELETE_THEN_INSERT for every other RouteApplier.
    """

    @abstractmethod
    def replace_route(self, table: RouteTableView, destination: str, endpoint: NetworkEndpoint) -> None:
        ...


class RouteSetReconciler:
    """
    Classifies and converges the routes to one destination over a table set.

    Args:
        tables: Route table snapshots, already filtered (see ReconciliationFilter).
        destination: Single-address CIDR of the floating IP.
        endpoint: The resolved network endpoint of this instance.
        applier: Provider mutation primitives.
        dry_run: Report mutations instead of applying them.
        provider: Provider name for log and event context.
        structured_logger: Optional structured event logger.
    """

    def __init__(self, tables: Sequence[RouteTableView], destination: str, endpoint: NetworkEndpoint,
                 applier: RouteApplier, dry_run: bool = False, provider: str = "",
                 structured_logger: Optional[StructuredEventLogger] = None):
        if not tables:
            raise EmptyTableSetAfterFilter("No route table to reconcile")
        self._tables = list(tables)
        self.destination = destination
        self.endpoint = endpoint
        self.applier = applier
        self.dry_run = dry_run
        self.provider = provider
        self.structured_logger = structured_logger

    @property
    def tables(self) -> List[RouteTableView]:
        return list(self._tables)

    def classify(self, table: RouteTableView) -> RouteState:
        record = table.record_for(self.destination)
        if record is None:
            return RouteState.ABSENT
        ours = {ref for ref in (self.endpoint.endpoint_id, self.endpoint.instance) if ref}
        if ours.intersection(record.targets):
            return RouteState.CORRECT_TARGET
        return RouteState.WRONG_TARGET

    def classify_all(self) -> Dict[str, RouteState]:
        return {table.table_id: self.classify(table) for table in self._tables}

    def status(self) -> bool:
        """True when every table routes the destination to this instance."""
        states = self.classify_all()
        owner = all(state is RouteState.CORRECT_TARGET for state in states.values())
        logger.debug(f"Route states for {self.destination}: "
                     f"{', '.join(f'{t}={s.value}' for t, s in states.items())}")
        if self.structured_logger:
            self.structured_logger.log_route_status(
                provider=self.provider,
                destination=self.destination,
                owner=owner,
                table_states={t: s.value for t, s in states.items()},
            )
        return owner

    def plan_preempt(self) -> List[RouteAction]:
        actions = []
        for table in self._tables:
            state = self.classify(table)
            if state is RouteState.CORRECT_TARGET:
                continue
            if state is RouteState.ABSENT:
                kind = ActionKind.CREATE
                previous = ()
            else:
                if isinstance(self.applier, AtomicReplaceApplier):
                    kind = ActionKind.REPLACE
                else:
                    kind = ActionKind.DELETE_THEN_INSERT
                previous = table.record_for(self.destination).targets
            actions.append(RouteAction(
                table_id=table.table_id,
                kind=kind,
                destination=self.destination,
                target=self.endpoint.endpoint_id,
                previous_targets=previous,
            ))
        return actions

    def plan_destroy(self) -> List[RouteAction]:
        actions = []
        for table in self._tables:
            if self.classify(table) is RouteState.ABSENT:
                continue
            actions.append(RouteAction(
                table_id=table.table_id,
                kind=ActionKind.DELETE,
                destination=self.destination,
                previous_targets=table.record_for(self.destination).targets,
            ))
        return actions

    def preempt(self) -> List[RouteAction]:
        """Route the destination to this instance in every table."""
        actions = self.plan_preempt()
        if not actions:
            logger.info("Already primary, nothing to do")
            return actions
        logger.info(f"Preempting {self.destination} route(s)")
        return self._apply(actions)

    def destroy(self) -> List[RouteAction]:
        """Remove the route to the destination from every table."""
        actions = self.plan_destroy()
        if not actions:
            logger.info(f"No route to {self.destination}, nothing to delete")
            return actions
        return self._apply(actions)

    def _table(self, table_id: str) -> RouteTableView:
        for table in self._tables:
            if table.table_id == table_id:
                return table
        raise KeyError(table_id)

    def _store(self, updated: RouteTableView) -> None:
        self._tables = [updated if t.table_id == updated.table_id else t for t in self._tables]

    def _apply(self, actions: List[RouteAction]) -> List[RouteAction]:
        for action in actions:
            logger.info(action.describe())

            if self.dry_run:
                self._log_action(action, ActionResult.SKIPPED)
                continue

            table = self._table(action.table_id)
            start_time = time.time()
            try:
                if action.kind is ActionKind.CREATE:
                    self.applier.create_route(table, self.destination, self.endpoint)
                elif action.kind is ActionKind.REPLACE:
                    self.applier.replace_route(table, self.destination, self.endpoint)
                elif action.kind is ActionKind.DELETE_THEN_INSERT:
                    logger.warning(f"Route to {self.destination} in table {table.table_id} will be "
                                   f"absent until the new route is inserted")
                    self.applier.delete_route(table, self.destination)
                    self._store(table.without_destination(self.destination))
                    self.applier.create_route(table, self.destination, self.endpoint)
                else:
                    self.applier.delete_route(table, self.destination)
            except ProviderAPIError as e:
                duration_ms = int((time.time() - start_time) * 1000)
                self._log_action(action, ActionResult.FAILURE, duration_ms, str(e))
                logger.error(f"Failed to {action.kind.value} route to {self.destination} "
                             f"in table {action.table_id}: {e}")
                if e.table_id is None:
                    raise ProviderAPIError(f"Failed to {action.kind.value} route to {self.destination}",
                                           table_id=action.table_id, cause=e) from e
                raise

            action.applied = True
            if action.kind is ActionKind.DELETE:
                self._store(table.without_destination(self.destination))
            else:
                self._store(table.with_record(RouteRecord(
                    destination=self.destination,
                    targets=(self.endpoint.endpoint_id, self.endpoint.instance),
                )))
            self._log_action(action, ActionResult.SUCCESS, int((time.time() - start_time) * 1000))

        return actions

    def _log_action(self, action: RouteAction, result: ActionResult,
                    duration_ms: Optional[int] = None, error_message: Optional[str] = None) -> None:
        if self.structured_logger:
            self.structured_logger.log_route_change(
                provider=self.provider,
                table_id=action.table_id,
                destination=action.destination,
                action=action.kind.value,
                result=result,
                target=action.target,
                duration_ms=duration_ms,
                error_message=error_message,
            )
