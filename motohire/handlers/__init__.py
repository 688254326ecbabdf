"""Handlers package - entry points for booking screens and provider callbacks."""


def format_error_message(emoji: str, problem: str, action: str) -> str:
    """
    Format error messages following the pattern: [emoji] [problem] [action].

    Args:
        emoji: Visual indicator (e.g., "❌", "⚠️", "🔒")
        problem: Clear description of what went wrong
        action: Suggested next step for the rider

    Returns:
        Formatted error message string

    Example:
        >>> format_error_message("❌", "Bike unavailable", "Pick other dates")
        "❌ Bike unavailable\n\nPick other dates"
    """
    return f"{emoji} {problem}\n\n{action}"


# Common error templates
ERROR_TEMPLATES = {
    "permission_denied": lambda: format_error_message(
        "🔒",
        "You don't have permission to perform this action.",
        "Make sure you're using the correct account."
    ),
    "reservation_not_found": lambda: format_error_message(
        "❌",
        "Reservation not found.",
        "Check your bookings under My Reservations."
    ),
    "not_cancellable": lambda status: format_error_message(
        "❌",
        f"This reservation is already {status}.",
        "Only reservations awaiting payment can be cancelled."
    ),
    "missing_asset": lambda: format_error_message(
        "❌",
        "No motorcycle selected.",
        "Choose a bike before booking."
    ),
    "asset_name_too_long": lambda: format_error_message(
        "❌",
        "That bike name is too long.",
        "Pick the bike from the list instead."
    ),
    "missing_dates": lambda: format_error_message(
        "📅",
        "Pickup and return dates are required.",
        "Select both dates to continue."
    ),
    "invalid_date_range": lambda: format_error_message(
        "📅",
        "The return date is before the pickup date.",
        "Choose a return date on or after pickup."
    ),
    "missing_pickup_location": lambda: format_error_message(
        "📍",
        "Pickup location is required.",
        "Tell us where you'll collect the bike."
    ),
    "pickup_location_too_long": lambda: format_error_message(
        "📍",
        "That pickup location is too long.",
        "Keep it to 200 characters or fewer."
    ),
    "missing_phone": lambda: format_error_message(
        "📱",
        "M-Pesa phone number is required.",
        "Enter the number that will pay."
    ),
    "invalid_phone": lambda: format_error_message(
        "📱",
        "That doesn't look like an M-Pesa number.",
        "Use a Safaricom number like 0712 345 678."
    ),
    "asset_unavailable": lambda: format_error_message(
        "🔴",
        "This bike is already booked for those dates.",
        "Pick other dates or another bike."
    ),
    "asset_busy": lambda: format_error_message(
        "⏱️",
        "Someone else is booking this bike right now.",
        "Please try again in a few seconds."
    ),
    "reservation_failed": lambda: format_error_message(
        "❌",
        "We couldn't create your reservation.",
        "No payment was requested. Please try again."
    ),
    "payment_failed": lambda reason: format_error_message(
        "❌",
        f"Payment failed: {reason}",
        "Your reservation was released. Please try again."
    ),
    "payment_unavailable": lambda: format_error_message(
        "⚠️",
        "M-Pesa payments are unavailable right now.",
        "Your reservation was released. Please try again later."
    ),
    "payment_cancelled": lambda: format_error_message(
        "⚠️",
        "Payment was cancelled on your phone.",
        "Your reservation was released. Book again when ready."
    ),
    "promo_empty_code": lambda: format_error_message(
        "🏷️",
        "Enter a promo code to apply it.",
        "Booking continues at the regular price."
    ),
    "promo_not_found": lambda: format_error_message(
        "🏷️",
        "Invalid promo code.",
        "Check the spelling. Booking continues at the regular price."
    ),
    "promo_inactive": lambda: format_error_message(
        "🏷️",
        "This promo code is no longer active.",
        "Booking continues at the regular price."
    ),
    "promo_below_minimum_order": lambda minimum: format_error_message(
        "🏷️",
        f"This promo code needs an order of at least KES {minimum:,}.",
        "Add days or gear, or book at the regular price."
    ),
    "promo_usage_cap_reached": lambda: format_error_message(
        "🏷️",
        "This promo code has reached its usage limit.",
        "Booking continues at the regular price."
    ),
    "promo_expired": lambda: format_error_message(
        "🏷️",
        "This promo code has expired.",
        "Booking continues at the regular price."
    ),
    "promo_not_yet_valid": lambda: format_error_message(
        "🏷️",
        "This promo code isn't valid yet.",
        "Booking continues at the regular price."
    ),
}
