from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PortalSelectors:
    """
    The portal is a SPA whose login UI changes between releases.
    Keep all UI selectors here; each field is an ordered candidate set for one logical control
    (earlier entries are preferred, any match is accepted).
    """

    # Landing page control that reveals the credential form.
    entry_control: tuple[str, ...] = (
        "button.LoginRegisterView__column__button",
        'button:has-text("Zaloguj się")',
        'a:has-text("Zaloguj się")',
        'button:has-text("Log in")',
    )

    # Login
    email_input: tuple[str, ...] = (
        'input[placeholder="Adres email"]',
        'input[placeholder*="email" i]',
        'input[type="email"]',
        'input[name="email"]',
    )
    password_input: tuple[str, ...] = (
        'input[placeholder="Hasło"]',
        'input[placeholder*="hasło" i]',
        'input[type="password"]',
        'input[name="password"]',
    )
    submit_button: tuple[str, ...] = (
        'button[type="submit"]',
        'button:has-text("Zaloguj")',
        'button:has-text("Log in")',
    )

    # 2FA: six single-character inputs.
    second_factor_inputs: tuple[str, ...] = (
        'input[autocomplete="one-time-code"]',
        'input[inputmode="numeric"][maxlength="1"]',
        'input[maxlength="1"]',
    )
    second_factor_submit: tuple[str, ...] = (
        'button[type="submit"]',
        'button:has-text("Zweryfikuj")',
        'button:has-text("Potwierdź")',
        'button:has-text("Verify")',
    )
