import config


def record_action(player: dict):
    """Any accepted action clears the player's run of timeouts."""
    player["timeouts"] = 0


def record_timeout(player: dict) -> bool:
    """Count a missed deadline. Returns True once the player must be expelled."""
    player["timeouts"] = player.get("timeouts", 0) + 1
    return player["timeouts"] >= config.MAX_CONSECUTIVE_TIMEOUTS


def reset_all(players: dict):
    for player in players.values():
        player["timeouts"] = 0
