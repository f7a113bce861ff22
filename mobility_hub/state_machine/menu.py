"""
Main menu entries, shared by the dispatcher and flows that exit to the menu
"""
from mobility_hub.state_machine.events import OutboundAction

# (row id, numeric shortcut, title, description)
MENU_ENTRIES = (
    ("QR", "1", "MoMo payment QR", "Get paid by scan"),
    ("ND", "2", "Nearby drivers", "Find and book a ride now"),
    ("ST", "3", "Schedule a trip", "Plan a ride or offer a route"),
    ("AV", "4", "Add a vehicle", "Register from a logbook photo"),
    ("INSURANCE", "5", "Motor insurance", "Quote, pay and get a certificate"),
)


def main_menu_prompt(to: str) -> OutboundAction:
    return OutboundAction.with_list(
        to,
        "Welcome to Mobility Hub. What would you like to do?",
        [(row_id, f"{shortcut}. {title}", description) for row_id, shortcut, title, description in MENU_ENTRIES],
        list_button="Menu",
    )
