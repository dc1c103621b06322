"""
Pipeline: one tile per invocation

Entry point:
    python -m pipeline.land --tile 7 --desc data/index            # index
    python -m pipeline.land --tile 7 --desc data/index --match --cat query.txt --out outputs
"""
