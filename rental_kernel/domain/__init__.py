"""Pure domain layer: values, DTOs, state machine rules, protocols, clock."""
