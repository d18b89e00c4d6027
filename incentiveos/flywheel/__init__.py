"""Knowledge Flywheel.

Learns how much to trust each computation pattern. Tenant density drives
trace verbosity; anonymised foundational and domain priors give new tenants
a discounted head start. Reconciliation and resolution feed signals back
into density on the next load.
"""
