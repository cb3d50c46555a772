"""Lua scripts executed atomically in Redis.

Each script replaces a read-check-write sequence that would otherwise race
between concurrent redirects, or between a redirect and the sync worker.
Scripts are registered per client with ``Redis.register_script`` and invoked by
SHA, falling back to EVAL when the server has not cached them yet.
"""

__all__ = [
    "MERGE_DIRTY_SCRIPT",
    "RATE_LIMIT_SCRIPT",
    "REDIRECT_SCRIPT",
]


# KEYS[1] = url:<code>:clicks
# KEYS[2] = url:<code>:expiry
# KEYS[3] = dirty_urls
# ARGV[1] = fallback click count ("" = caller has none, ask for one)
# ARGV[2] = fallback expiry (canonical ISO string)
# ARGV[3] = now (canonical ISO string)
# ARGV[4] = short code
# ARGV[5] = fallback expiry as unix epoch seconds
#
# Returns -2 when the click key is missing and no fallback was supplied,
# -1 when expired, otherwise the new click count. Keys seeded here expire
# with the link; EXPIREAT runs last so a past epoch cannot drop a key mid-script.
REDIRECT_SCRIPT = """
local seeded_clicks = false
local seeded_expiry = false
if redis.call('EXISTS', KEYS[1]) == 0 then
    if ARGV[1] == '' then
        return -2
    end
    redis.call('SET', KEYS[1], ARGV[1])
    seeded_clicks = true
end
if redis.call('EXISTS', KEYS[2]) == 0 then
    redis.call('SET', KEYS[2], ARGV[2])
    seeded_expiry = true
end
local expiry = redis.call('GET', KEYS[2])
local result = -1
if expiry >= ARGV[3] then
    result = redis.call('INCR', KEYS[1])
    redis.call('SADD', KEYS[3], ARGV[4])
end
if seeded_clicks then
    redis.call('EXPIREAT', KEYS[1], tonumber(ARGV[5]))
end
if seeded_expiry then
    redis.call('EXPIREAT', KEYS[2], tonumber(ARGV[5]))
end
return result
"""

# KEYS[1] = rate_limit:<client_id>
# ARGV[1] = window in seconds
#
# Returns the count after increment. The TTL is only set on the 0 -> 1
# transition so later requests never push the window forward.
RATE_LIMIT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return count
"""

# KEYS[1] = dirty_urls
# KEYS[2] = dirty_urls:processing
#
# Folds the active dirty set into a leftover processing set. Returns the size
# of the processing set afterwards.
MERGE_DIRTY_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    redis.call('SUNIONSTORE', KEYS[2], KEYS[2], KEYS[1])
    redis.call('DEL', KEYS[1])
end
return redis.call('SCARD', KEYS[2])
"""
