# xcrypt Test Suite
"""
Test suite including:
- Unit tests (key tag, chunk cipher, atomic commit)
- Pipeline tests (round trip, file format, state machine)
- Security tests (wrong keys, self-transform, injected faults)
- Integration tests (syscall entry point, registry, audit log, CLI)

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""
