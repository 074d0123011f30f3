"""Herald: leader-election status sidecar.

Turns lease-based leader election outcomes into marker files that
processes sharing the status directory can poll:
- <status_dir>/leader holds the identity while this instance leads
- <status_dir>/follower holds the identity while another instance leads
- the marker's modification time is refreshed while the role is held
"""

__version__ = "0.1.0"
