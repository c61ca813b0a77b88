"""Search orchestration: the state machine and the run streaming around it."""
