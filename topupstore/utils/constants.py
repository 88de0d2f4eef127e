class Colors:
    PRIMARY = 0x3B82F6
    SUCCESS = 0x22C55E
    WARNING = 0xF59E0B
    ERROR = 0xEF4444
    INFO = 0x6366F1


class Emojis:
    SUCCESS = "✅"
    ERROR = "❌"
    WARNING = "⚠️"
    INFO = "ℹ️"
    STORE = "🎮"
    ROCKET = "🚀"
