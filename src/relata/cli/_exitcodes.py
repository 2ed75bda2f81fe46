"""Process exit codes used by the relata CLI."""

SUCCESS = 0
GENERAL_ERROR = 1
VALIDATION_ERROR = 2
USAGE_ERROR = 3
CONFIGURATION_ERROR = 4
