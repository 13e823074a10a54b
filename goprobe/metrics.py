from prometheus_client import Counter, Histogram

captures = Counter(
    'goprobe_captures_total',
    'Total capture requests',
    ['mode', 'outcome']  # labels: pod or ip, success or the error class name
)

capture_duration = Histogram(
    'goprobe_capture_duration_seconds',
    'Duration of capture requests, including rendering',
    ['mode']
)

sample_fetch_failures = Counter(
    'goprobe_sample_fetch_failures_total',
    'Sample kinds that could not be fetched or rendered',
    ['kind']
)
