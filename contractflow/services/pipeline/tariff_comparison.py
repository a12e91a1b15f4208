from datetime import datetime, timezone
from typing import Any, Dict, Mapping


class TariffComparator:
    """Placeholder comparison of a contract against alternative tariffs.

    Returns a fixed shape built from the extracted data; no pricing logic.
    """

    def compare(self, extracted_data: Mapping[str, Any]) -> Dict[str, Any]:
        provider = extracted_data.get("provider")
        provider_name = provider if isinstance(provider, str) and provider else "Unknown"
        return {
            "current_tariff": f"{provider_name} Current Plan",
            "monthly_rate": extracted_data.get("monthly_rate"),
            "alternatives": [
                {"provider": "SwitchUp Best", "estimated_savings": "15%", "monthly_rate": None},
            ],
            "compared_at": datetime.now(timezone.utc).isoformat(),
        }
