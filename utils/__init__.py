"""Domain services: assignment, state machine, monitor, notifications and delivery channels."""
