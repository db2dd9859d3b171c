"""
Domain models, the index.xml codec, header parsing and the Repository aggregate.
"""
