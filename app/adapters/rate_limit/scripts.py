"""Redis Lua scripts for the sliding-window rate limiter.

Each script runs inside the Redis engine, so the prune/count/append sequence
is atomic regardless of how many gateway instances call it concurrently.
Window entries live in a sorted set scored by their millisecond timestamp.
"""

# KEYS[1] = window key
# ARGV[1] = now (ms), ARGV[2] = window (ms), ARGV[3] = limit, ARGV[4] = member
# Returns {count_before_request, oldest_score_or_-1, recorded_flag}
SLIDE_AND_COUNT_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    local member = ARGV[4]

    -- Drop entries strictly older than the window start
    redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. (now - window))

    local count = redis.call('ZCARD', key)

    -- A retried call whose first attempt already landed must not add twice
    if redis.call('ZSCORE', key, member) then
        local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        return {count - 1, tonumber(oldest[2]), 1}
    end

    if count < limit then
        redis.call('ZADD', key, now, member)
        redis.call('PEXPIRE', key, window)
        local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        return {count, tonumber(oldest[2]), 1}
    end

    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    local oldest_score = -1
    if oldest[2] then
        oldest_score = tonumber(oldest[2])
    end
    return {count, oldest_score, 0}
"""

# Read-only view of a window. Same key/argument layout as above (no member).
PEEK_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local window_start = now - window

    local count = redis.call('ZCOUNT', key, window_start, '+inf')
    local oldest = redis.call('ZRANGEBYSCORE', key, window_start, '+inf', 'WITHSCORES', 'LIMIT', 0, 1)
    local oldest_score = -1
    if oldest[2] then
        oldest_score = tonumber(oldest[2])
    end
    return {count, oldest_score, 0}
"""
