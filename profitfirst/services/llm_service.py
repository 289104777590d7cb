"""
LLM Service for model-assisted forecasts
Sends trailing monthly figures to Claude and returns its raw JSON answer
"""
import json
from typing import Dict, List, Optional

from anthropic import Anthropic

from profitfirst.config import get_settings
from profitfirst.utils.logger import log

settings = get_settings()


class LLMService:
    """
    Thin wrapper around the Anthropic client.

    Output is untrusted: callers validate it and fall back to the statistical
    forecast on anything unexpected.
    """

    def __init__(self, client=None):
        self.enabled = bool(settings.enable_llm_insights and settings.anthropic_api_key) or client is not None
        self.client = client

        if client is not None:
            return
        if self.enabled:
            try:
                self.client = Anthropic(api_key=settings.anthropic_api_key)
                log.info("LLM Service initialized with Claude")
            except Exception as e:
                log.error(f"Failed to initialize Anthropic client: {str(e)}")
                self.enabled = False
        else:
            log.info("LLM forecasts disabled (no API key or feature disabled)")

    def predict_months(self, history: List[Dict], months: int, month_keys: List[str]) -> Optional[str]:
        """
        Ask the model for the next ``months`` months.

        Returns the response text (expected to be JSON), or None when disabled
        or the call fails.
        """
        if not self.enabled or self.client is None:
            return None

        try:
            prompt = f"""You are a financial analyst for an Indian e-commerce brand. Amounts are in INR.

Here are the actual figures for the last {len(history)} months:

{json.dumps(history, indent=2, default=str)}

Predict the next {months} months: {", ".join(month_keys)}.

Respond with JSON only, no commentary, in exactly this shape:
{{"predictions": [{{"key": "<Month Name>", "values": {{"revenue": 0, "orders": 0, "aov": 0, "cogs": 0, "grossProfit": 0, "ads": 0, "shipping": 0, "netProfit": 0}}}}]}}
"""

            response = self.client.messages.create(
                model=settings.llm_model,
                max_tokens=settings.llm_max_tokens,
                messages=[{"role": "user", "content": prompt}]
            )

            text = response.content[0].text
            log.info("Generated forecast via LLM")
            return text

        except Exception as e:
            log.error(f"Error generating LLM forecast: {str(e)}")
            return None
