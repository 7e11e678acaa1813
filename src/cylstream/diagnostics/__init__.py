"""HDF5 snapshots for relaxation restart and pool output."""
