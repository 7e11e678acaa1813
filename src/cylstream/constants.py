"""Physical and numerical constants for the package.

Physical values sourced from ``scipy.constants`` (CODATA 2018).
Import from here instead of defining local constants.
"""

import scipy.constants as _sc

# Mathematical
pi = _sc.pi

# Astronomical (cgs), used only for the summary printout in solar units
solarm = 1.98847e33           # Solar mass [g]
solarr = 6.957e10             # Solar radius [cm]

# SPH kernel
hfact_default = 1.2           # h = hfact * (m / rho)^(1/3)
radkern = 2.0                 # Kernel support radius in units of h

# Tabulated transverse density profile
nrhotab = 5000                # Number of radial points in the profile table

# Reservoir record files
reservoir_header_lines = 12   # Header lines skipped when reading a reservoir
reservoir_columns = 10        # x y z m h rho vx vy vz u

# Relaxation
courant_factor = 0.3          # dt_i = courant_factor * h_i / c_s,i
relax_damp = 0.01             # Velocity damping during relaxation
u_relax_particle = 1.0e-5     # Baseline u at the axis density during relaxation
u_after_relax = 1.0e-15       # Thermal energy assigned when options are restored
buffer_inner = 1.01           # Buffer annulus inner radius [R]
buffer_outer = 1.6            # Buffer annulus outer radius [R]
relax_box = 10.0              # Transverse half-width of the relaxation box [R]

# Injection
u_injection_factor = 1.0e-5   # u = u_injection_factor * vinj^2
