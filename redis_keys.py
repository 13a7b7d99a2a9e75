REDIS_MESSAGE_KEY = "message:{message_id}" # direct message hash
REDIS_MESSAGE_ID_KEY = "message:next_id" # counter for direct message ids
REDIS_CONVERSATION_KEY = "conversation:{low}:{high}" # list of direct message ids between two users, low id first
REDIS_UNREAD_KEY = "unread:{user_id}" # set of unread direct message ids received by a user

REDIS_CHAT_MESSAGE_KEY = "chat:message:{message_id}" # room message hash
REDIS_CHAT_MESSAGE_ID_KEY = "chat:message:next_id" # counter for room message ids
REDIS_ROOM_MESSAGES_KEY = "room:messages:{room_id}" # list of room message ids

REDIS_ROOM_META_KEY = "room:meta:{room_id}" # room hash
REDIS_ROOM_ID_KEY = "room:next_id" # counter for room ids
REDIS_ROOM_MEMBERS_KEY = "room:members:{room_id}" # set of member user ids
REDIS_ROOM_MEMBER_KEY = "room:member:{room_id}:{user_id}" # membership hash (role, joined_at)
REDIS_ROOMS_KEY = "rooms" # set of all room ids
REDIS_USER_ROOMS_KEY = "user:rooms:{user_id}" # set of room ids a user is a member of

# **Example `message:{id}` hash fields**
# - `id` = integer
# - `sender_id`, `receiver_id` = user ids
# - `content`, `media_type`, `media_url` = strings
# - `read` = "1" / "0"
# - `created_at` = ISO timestamp (UTC)
