"""
odbridge Test Suite
===================

Property-based tests for critical invariants.

Philosophy:
- Focus on invariants (properties that must always be true)
- Test critical paths (connection lifecycle, debounce, discovery epochs)
- NOT 100% coverage - only key behaviors
- paho is mocked; no broker required

Modules:
- test_config_validation: Pydantic config and env overrides
- test_events: Connection event channel
- test_connection_manager: Connect/retry/drop/disconnect
- test_discovery: Topic layout, discovery payload, once-per-epoch publishing
- test_aggregator: Counting and debounced state publishing
- test_bridge_flow: Wired bridge end to end
- test_identity: Persisted device id
- test_app: Frame parsing, JSON-lines source, CLI
- test_state_monitor: Threshold subscriber
- test_logging: JSON formatter and trace context
"""
