"""Auto-instrumentation Scope Reconciler (ASR).

Keeps running workloads aligned with a live, editable selection policy:
 - watches the policy ConfigMap and reloads it on every edit
 - diffs the old and new policy to find the criteria that changed
 - restarts the controllers whose pods are affected, so the admission-time
   injector re-evaluates them
 - answers "is this pod in scope right now?" against the committed policy
"""
