# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Plain-text model description language.

Model descriptions follow the BUGS/JAGS conventions: stochastic relations are
written with ``~``, deterministic relations with ``<-``, and repeated structure
with ``for`` loops over 1-based integer ranges.

.. code-block:: text

    model {
      for (i in 1:N) {
        y[i] ~ dnorm(mu[i], tau)
        mu[i] <- b0 + b1 * x[i]
      }
      b0 ~ dnorm(0, 1.0E-4)
      b1 ~ dnorm(0, 1.0E-4)
      sigma ~ dunif(0, 100)
      tau <- 1 / (sigma ^ 2)
    }
"""

from scigibbs.model.language.parser import parse
