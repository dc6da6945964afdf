"""
Backoffice package for the site administration API.

This package provides a FastAPI application with a generic CRUD engine,
admin authorization and realtime invalidation so every admin resource
(products, services, testimonials, blog posts, contacts, quotes) shares
one implementation instead of a hand-written route file each.
"""
