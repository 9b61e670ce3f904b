"""
Cache Domain Module

Domain-Driven Design implementation of the computed-result cache.
Contains entities, value objects, the store interface and domain services.
"""
