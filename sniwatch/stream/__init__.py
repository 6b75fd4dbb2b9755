"""
sniwatch.stream

The live pipeline: LineSource -> StreamBatcher -> (parse on demand) -> filter.
"""
