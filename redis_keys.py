REDIS_USER_KEY = "user:{username}" # hash - password hash, salt, email, created_at
REDIS_USER_EMAIL_KEY = "user:emails" # hash - email -> username
REDIS_USER_ROOMS_KEY = "user:rooms:{username}" # set of room ids the user belongs to
REDIS_TOKEN_KEY = "auth:token:{token}" # username, expires with the session TTL

REDIS_ROOM_ID_COUNTER = "room:next_id" # INCR counter for room ids
REDIS_ROOM_KEY = "room:meta:{room_id}" # hash - id, name, created_by, created_at
REDIS_ROOM_NAMES_KEY = "room:names" # hash - name -> room id
REDIS_ROOM_INDEX_KEY = "room:index" # sorted set of room ids scored by id
REDIS_MEMBERS_KEY = "room:members:{room_id}" # set of usernames
REDIS_MEMBER_JOINED_KEY = "room:joined:{room_id}" # hash - username -> joined_at

REDIS_MESSAGES_KEY = "room:messages:{room_id}" # list of JSON messages, oldest first
REDIS_MESSAGE_ID_COUNTER = "message:next_id" # INCR counter for message ids

# **Example `room:meta:{id}` hash fields**
# - `id` = `{room_id}`
# - `name` = unique room name
# - `created_by` = founder username
# - `created_at` = ISO timestamp

# **Example `room:messages:{id}` entry**
# {"id": 12, "room_id": 7, "sender": "alice", "content": "hi", "kind": "message",
#  "created_at": "2026-01-01T10:00:00+00:00", "extra": {}}
