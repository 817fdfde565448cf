"""Pure domain layer: statuses, lifecycle tables, state machine, clock, DTOs."""
