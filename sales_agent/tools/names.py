"""Names of the tools exposed by the storefront tool server."""

CATALOG_SEARCH = "consultarCatalogo"
ADD_ONS = "get_adicionais"
DELIVERY_AVAILABILITY = "validate_delivery_availability"
ACTIVE_HOLIDAYS = "get_active_holidays"
FREIGHT = "calculate_freight"
BUSINESS_HOURS = "get_current_business_hours"
SAVE_CUSTOMER_SUMMARY = "save_customer_summary"
NOTIFY_HUMAN = "notify_human_support"
BLOCK_SESSION = "block_session"
