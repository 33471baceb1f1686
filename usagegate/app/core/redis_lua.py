"""Redis Lua scripts for the shared state store.

These scripts provide atomic operations to prevent TOCTOU race conditions
when several processes update the same per-caller record.
"""

# Lua script for an atomic compare-and-set on a hash.
# The hash is only written when ARGV[1] still holds the value the caller read
# (ARGV[2]); an empty ARGV[2] means the field must not exist yet.
# Remaining ARGV entries are field/value pairs to write.
# Returns 1 when written, 0 when another writer got there first.
HASH_COMPARE_AND_SET_SCRIPT = """
    local key = KEYS[1]
    local guard_field = ARGV[1]
    local expected = ARGV[2]

    local current = redis.call('HGET', key, guard_field)
    if expected == '' then
        if current then
            return 0
        end
    elseif current ~= expected then
        return 0
    end

    for i = 3, #ARGV, 2 do
        redis.call('HSET', key, ARGV[i], ARGV[i + 1])
    end
    return 1
"""
