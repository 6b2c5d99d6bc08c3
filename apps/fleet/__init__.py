"""Fleet app package.

Cars and chauffeurs that bookings are made against. Fleet bookkeeping
itself is handled elsewhere; this app owns only the status flips and
counters the booking lifecycle triggers when a car is reserved or
returned.
"""
