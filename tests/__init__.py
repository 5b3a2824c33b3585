"""privy-user-export test suite.

Unit tests live in tests/unit, one module per privy_export.lib module plus
test_cli.py for the command line. No test touches the network or sleeps.
"""
