"""Shared constants for Temporal workflows."""

PROCESS_CONTRACT_WORKFLOW = "ProcessContractWorkflow"

# Activity names
PARSE_PDF_ACTIVITY = "parse_pdf_activity"
EXTRACT_DATA_ACTIVITY = "extract_data_activity"
VALIDATE_DATA_ACTIVITY = "validate_data_activity"
COMPARE_TARIFFS_ACTIVITY = "compare_tariffs_activity"

# Timeouts
DEFAULT_WORKFLOW_TIMEOUT_SECONDS = 3600  # 1 hour
DEFAULT_ACTIVITY_TIMEOUT_SECONDS = 300   # 5 minutes

# Activity retries; each failed attempt also increments the workflow's retry_count
ACTIVITY_MAXIMUM_ATTEMPTS = 3
