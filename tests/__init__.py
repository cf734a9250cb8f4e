"""
Dev Phone Tests

Running Tests:
    # Run all tests with pytest
    pytest tests/ -v

    # Run the session lifecycle scenarios only
    pytest tests/test_session_lifecycle.py -v

Test Coverage:
    - Session naming and label discovery
    - Resource provisioning and teardown
    - API key reuse and minting
    - Phone number webhook binding
    - Access token signing
    - Lifecycle state machine, signals and drain
    - Local HTTP API
    - Twilio adapter and command line
"""
