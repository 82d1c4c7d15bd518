"""Pre-flight token budget validation for a single model request."""

from __future__ import annotations

from oversized_json.budget.tokens import TokenEstimator
from oversized_json.config import BudgetConfig
from oversized_json.errors import ConfigurationError
from oversized_json.types import BudgetValidationResult


class RequestBudgetValidator:
    """Checks whether prompt + message + data fit the model's input budget.

    The input budget is what remains of the context window after reserving
    `max_output_tokens` for the answer and `safety_margin` for estimation
    error:

        available = context_window - max_output_tokens - safety_margin

    A request fits when `available - total_input >= 0`; exactly zero tokens
    remaining still fits.
    """

    def __init__(
        self,
        config: BudgetConfig | None = None,
        *,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.config = config or BudgetConfig()
        self.estimator = estimator or TokenEstimator()
        if self.config.available_tokens <= 0:
            raise ConfigurationError(
                "max_output_tokens + safety_margin must be less than context_window "
                f"(context_window={self.config.context_window}, "
                f"max_output_tokens={self.config.max_output_tokens}, "
                f"safety_margin={self.config.safety_margin})"
            )

    @property
    def available_tokens(self) -> int:
        return self.config.available_tokens

    def validate(
        self, system_prompt: str, user_message: str, data_payload: str
    ) -> BudgetValidationResult:
        system_tokens = self.estimator.estimate(system_prompt)
        user_tokens = self.estimator.estimate(user_message)
        data_tokens = self.estimator.estimate(data_payload)

        total_input = system_tokens + user_tokens + data_tokens
        available = self.available_tokens
        remaining = available - total_input

        return BudgetValidationResult(
            system_prompt_tokens=system_tokens,
            user_message_tokens=user_tokens,
            data_tokens=data_tokens,
            total_input_tokens=total_input,
            available_tokens=available,
            remaining_tokens=remaining,
            fits_budget=remaining >= 0,
            utilization_percent=total_input / available * 100.0,
        )


def validate_request(
    system_prompt: str,
    user_message: str,
    data_payload: str,
    *,
    context_window: int = 128000,
    max_output_tokens: int = 4000,
    safety_margin: int = 500,
) -> BudgetValidationResult:
    """One-shot validation without keeping a validator around."""

    validator = RequestBudgetValidator(
        BudgetConfig(
            context_window=context_window,
            max_output_tokens=max_output_tokens,
            safety_margin=safety_margin,
        )
    )
    return validator.validate(system_prompt, user_message, data_payload)
