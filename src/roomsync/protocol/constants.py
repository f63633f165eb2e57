# Frame type constants (stringly-typed protocol; canonical list lives here)

# client -> server
T_CHAT = "chat"
T_COUNTER_INC = "counter_inc"
T_DRAW_POINT = "draw_point"
T_DRAW_END = "draw_end"
T_PING = "ping"

# server -> client
# (chat, draw_point and draw_end deltas reuse the inbound type names)
T_COUNTER = "counter"
T_SNAPSHOT = "snapshot"
T_ERROR = "error"
T_PONG = "pong"

# Schema limits; the chat/frame ones are overridable via Settings.
MAX_STROKE_ID_LEN = 128
MAX_CHAT_TEXT_LEN = 2000
MAX_FRAME_BYTES = 64 * 1024
