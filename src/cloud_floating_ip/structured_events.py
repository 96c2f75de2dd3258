import logging
import time
from typing import Dict, Any, Optional
from enum import Enum
from dataclasses import dataclass, asdict


class EventType(Enum):
    """Standard event types for structured logging"""
    ROUTE_CHANGE = "route_change"
    ROUTE_STATUS = "route_status"
    OPERATION_WAIT = "operation_wait"
    PROVIDER_DETECTION = "provider_detection"
    LIFECYCLE = "lifecycle"


class ActionResult(Enum):
    """Standard action results"""
    SUCCESS = "success"
    FAILURE = "failure"
    NO_CHANGE = "no_change"
    SKIPPED = "skipped"


@dataclass
class StructuredEvent:
    """Base structure for all structured log events"""
    event_type: str
    timestamp: float
    result: str
    component: str
    operation: str
    details: Dict[str, Any]
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    correlation_id: Optional[str] = None


class StructuredEventLogger:
    """Handles structured logging for floating IP events"""

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(logger_name)
        self.correlation_id = None

    def set_correlation_id(self, correlation_id: str):
        """Set correlation ID for tracking related events across one invocation"""
        self.correlation_id = correlation_id

    def log_event(self, event: StructuredEvent) -> None:
        """Log a structured event with consistent schema"""
        if not isinstance(event, StructuredEvent):
            raise TypeError(f"Event must be StructuredEvent dataclass, got {type(event)}")

        if self.correlation_id:
            event.correlation_id = self.correlation_id
        log_data = {
            "structured_event": True,
            **asdict(event)
        }

        level = logging.INFO
        if event.result == ActionResult.FAILURE.value:
            level = logging.ERROR
        elif event.result == ActionResult.NO_CHANGE.value:
            level = logging.DEBUG

        message = f"{event.component}.{event.operation}: {event.result}"
        if event.error_message:
            message += f" - {event.error_message}"

        self.logger.log(level, message, extra={"json_fields": log_data})

    def log_route_change(self,
                         provider: str,
                         table_id: str,
                         destination: str,
                         action: str,  # "create", "replace", "delete_then_insert", "delete"
                         result: ActionResult,
                         target: str = None,
                         duration_ms: int = None,
                         error_message: str = None) -> None:
        """Log a planned or applied route mutation"""

        event = StructuredEvent(
            event_type=EventType.ROUTE_CHANGE.value,
            timestamp=time.time(),
            result=result.value,
            component=provider,
            operation=f"{action}_route",
            details={
                "table_id": table_id,
                "destination": destination,
                "action": action,
                "target": target,
            },
            duration_ms=duration_ms,
            error_message=error_message
        )

        self.log_event(event)

    def log_route_status(self,
                         provider: str,
                         destination: str,
                         owner: bool,
                         table_states: Dict[str, str]) -> None:
        """Log the result of a status evaluation"""

        event = StructuredEvent(
            event_type=EventType.ROUTE_STATUS.value,
            timestamp=time.time(),
            result=ActionResult.SUCCESS.value,
            component=provider,
            operation="status",
            details={
                "destination": destination,
                "owner": owner,
                "tables": table_states,
            }
        )

        self.log_event(event)

    def log_operation_wait(self,
                           operation: str,
                           outcome: str,
                           attempts: int,
                           duration_ms: int = None,
                           error_message: str = None) -> None:
        """Log completion of an asynchronous provider operation"""

        result = ActionResult.SUCCESS if outcome == "done" else ActionResult.FAILURE

        event = StructuredEvent(
            event_type=EventType.OPERATION_WAIT.value,
            timestamp=time.time(),
            result=result.value,
            component="operation_waiter",
            operation="wait",
            details={
                "operation_id": operation,
                "outcome": outcome,
                "attempts": attempts,
            },
            duration_ms=duration_ms,
            error_message=error_message
        )

        self.log_event(event)

    def log_provider_detection(self,
                               provider: Optional[str],
                               requested: Optional[str],
                               probed: Dict[str, bool] = None,
                               error_message: str = None) -> None:
        """Log how the hosting provider was selected"""

        result = ActionResult.SUCCESS if provider else ActionResult.FAILURE

        event = StructuredEvent(
            event_type=EventType.PROVIDER_DETECTION.value,
            timestamp=time.time(),
            result=result.value,
            component="hoster_registry",
            operation="resolve",
            details={
                "provider": provider,
                "requested": requested,
                "probed": probed or {},
            },
            error_message=error_message
        )

        self.log_event(event)

    def log_lifecycle(self,
                      command: str,
                      result: ActionResult,
                      dry_run: bool = False,
                      duration_ms: int = None,
                      error_message: str = None) -> None:
        """Log the outcome of one command-line invocation"""

        event = StructuredEvent(
            event_type=EventType.LIFECYCLE.value,
            timestamp=time.time(),
            result=result.value,
            component="cli",
            operation=command,
            details={
                "dry_run": dry_run,
            },
            duration_ms=duration_ms,
            error_message=error_message
        )

        self.log_event(event)
