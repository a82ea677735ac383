"""Shared test data."""

TENANT = "tenant-1"
BOT = "bot-1"
COUNTERPART = "5511999990000"

FUNNEL_NODES = [
    {
        "id": "1",
        "type": "message",
        "content": "Hi! Want to know more?",
        "outgoing": [{"target": "2", "handle": "yes"}],
    },
    {
        "id": "2",
        "type": "question",
        "content": "Great, which plan fits you?",
        "outgoing": [{"target": "3", "handle": "business"}],
    },
    {"id": "3", "type": "end", "content": "Thanks, see you soon!"},
]

CALLING_CONFIG = {
    "is_active": True,
    "callings": [
        {
            "key": "interested",
            "enabled": True,
            "actions": {
                "send_message": {"enabled": True, "message": "Here is our catalog"},
                "add_tag": {"enabled": True, "tag": "lead"},
                "schedule_followup": {"enabled": True, "delay_minutes": 60, "message": "Still there?"},
            },
        },
        {
            "key": "human",
            "enabled": False,
            "actions": {"transfer_to_human": {"enabled": True}},
        },
        {
            "key": "payment_made",
            "enabled": False,
            "payment_config": {
                "validation": {"expected_amount": 5000, "expected_recipient": "store@example.com"},
                "actions_on_success": {"add_tag": {"enabled": True, "tag": "paid"}},
                "actions_on_value_below": {"send_message": {"enabled": True, "message": "Part is missing"}},
            },
        },
    ],
}
