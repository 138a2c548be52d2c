"""Active-active regional failover control plane."""
