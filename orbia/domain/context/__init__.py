# Context for one agent invocation
#
#  +---------------------+        +-----------------------------+
#  |   Thread state      |        |   Long-term memory          |
#  |---------------------|        |-----------------------------|
#  | Thread per user     |        | Semantic store (facts)      |
#  | Current checkpoint  |        | Graph store (relations)     |
#  | TTL 24h             |        | Scoped by user id           |
#  +---------------------+        +-----------------------------+
#             \                          /
#              \                        /
#               v                      v
#        +-------------------------------------+
#        |  Working message sequence + context |
#        +-------------------------------------+
#                         |
#                         v
#               [chat model / tool call]
