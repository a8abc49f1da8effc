"""Pure domain layer: value objects, lifecycle rules and policies. No I/O."""
