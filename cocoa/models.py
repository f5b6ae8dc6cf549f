#!/usr/bin/env python3
"""
Linear Benchmark Models
Discrete-time linear models with diagonal costs and box bounds, used to set
up closed-loop MPC problems for the solver
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np


@dataclass
class NoiseModel:
    """Additive Gaussian process and measurement noise"""
    process_std: float = 0.0
    measurement_std: float = 0.0
    seed: Optional[int] = None

    def generator(self) -> np.random.Generator:
        return np.random.default_rng(self.seed)


class LinearModel(ABC):
    """Base class for models x' = A x + B u + f"""

    def __init__(self, nstates: int, ninputs: int, noise_model: Optional[NoiseModel] = None):
        self.nstates = nstates
        self.ninputs = ninputs
        self.noise_model = noise_model or NoiseModel()

    @abstractmethod
    def system_matrices(self, dt: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Discrete-time A, B and affine term f"""

    @abstractmethod
    def cost_weights(self) -> Tuple[np.ndarray, np.ndarray]:
        """Diagonals of the state and input weights"""

    @abstractmethod
    def bounds(self) -> Dict[str, np.ndarray]:
        """Box bounds with keys x_min, x_max, u_min, u_max"""

    def step(self, x: np.ndarray, u: np.ndarray, dt: float) -> np.ndarray:
        A, B, f = self.system_matrices(dt)
        return A @ x + B @ u + f

    def get_info(self) -> Dict:
        return {
            'model': type(self).__name__,
            'nstates': self.nstates,
            'ninputs': self.ninputs,
        }


class DoubleIntegrator(LinearModel):
    """Point mass per axis: state [p, v], input acceleration"""

    def __init__(self, num_axes: int = 1, u_limit: float = 1.0, v_limit: float = 2.0,
                 noise_model: Optional[NoiseModel] = None):
        super().__init__(2 * num_axes, num_axes, noise_model)
        self.num_axes = num_axes
        self.u_limit = u_limit
        self.v_limit = v_limit

    def system_matrices(self, dt: float):
        n = self.num_axes
        A = np.eye(2 * n)
        A[:n, n:] = dt * np.eye(n)
        B = np.vstack([0.5 * dt ** 2 * np.eye(n), dt * np.eye(n)])
        return A, B, np.zeros(2 * n)

    def cost_weights(self):
        n = self.num_axes
        return np.concatenate([np.full(n, 10.0), np.full(n, 1.0)]), np.full(n, 0.1)

    def bounds(self):
        n = self.num_axes
        return {
            'x_min': np.concatenate([np.full(n, -np.inf), np.full(n, -self.v_limit)]),
            'x_max': np.concatenate([np.full(n, np.inf), np.full(n, self.v_limit)]),
            'u_min': np.full(n, -self.u_limit),
            'u_max': np.full(n, self.u_limit),
        }


@dataclass
class QuadcopterParams:
    """Physical parameters of a quadcopter, defaults from the Crazyflie"""
    mass: float = 0.036  # kg
    gravity: float = 9.81  # m/s^2
    arm_length: float = 0.046  # m
    thrust_to_torque: float = 0.005964552
    Ixx: float = 1.43e-5  # kg*m^2
    Iyy: float = 1.43e-5
    Izz: float = 2.89e-5
    drag_coefficient: float = 0.1
    angular_damping: float = 0.5


class HoverQuadrotor(LinearModel):
    """Quadrotor linearized around hover

    State [x, y, z, phi_x, phi_y, phi_z, vx, vy, vz, wx, wy, wz], input the
    four motor thrust deviations from hover. With include_gravity the
    uncompensated gravity acts as the affine term f.
    """

    def __init__(self, params: Optional[QuadcopterParams] = None,
                 noise_model: Optional[NoiseModel] = None, include_gravity: bool = False):
        super().__init__(12, 4, noise_model)
        self.params = params or QuadcopterParams()
        self.include_gravity = include_gravity

    def system_matrices(self, dt: float):
        p = self.params
        g = p.gravity

        A_cont = np.zeros((12, 12))
        A_cont[0, 6] = A_cont[1, 7] = A_cont[2, 8] = 1.0
        A_cont[0, 4] = g       # pitch tilts thrust into x
        A_cont[1, 3] = -g      # roll tilts thrust into -y
        A_cont[3, 9] = A_cont[4, 10] = A_cont[5, 11] = 1.0
        A_cont[6, 6] = A_cont[7, 7] = A_cont[8, 8] = -p.drag_coefficient
        A_cont[9, 9] = A_cont[10, 10] = A_cont[11, 11] = -p.angular_damping
        A = np.eye(12) + A_cont * dt

        B = np.zeros((12, 4))
        B[8, :] = 1.0 / p.mass
        arm = 0.707 * p.arm_length
        roll = arm / (4 * p.Ixx) * 100
        pitch = arm / (4 * p.Iyy) * 100
        yaw = p.thrust_to_torque / (4 * p.Izz) * 100
        B[9] = [-roll, -roll, roll, roll]
        B[10] = [pitch, -pitch, -pitch, pitch]
        B[11] = [yaw, -yaw, yaw, -yaw]
        B = B * dt

        f = np.zeros(12)
        if self.include_gravity:
            f[8] = -g * dt
        return A, B, f

    def cost_weights(self):
        q = np.array([100.0, 100.0, 400.0, 4.0, 4.0, 1111.0,
                      4.0, 4.0, 100.0, 2.0, 2.0, 25.0])
        return q, np.full(4, 144.0)

    def bounds(self):
        return {
            'x_min': np.array([-5.0, -5.0, 0.0, -0.5, -0.5, -np.pi,
                               -3.0, -3.0, -3.0, -2 * np.pi, -2 * np.pi, -2 * np.pi]),
            'x_max': np.array([5.0, 5.0, 5.0, 0.5, 0.5, np.pi,
                               3.0, 3.0, 3.0, 2 * np.pi, 2 * np.pi, 2 * np.pi]),
            'u_min': np.full(4, -0.5),
            'u_max': np.full(4, 0.5),
        }


def create_model(name: str = "double_integrator", **kwargs) -> LinearModel:
    """Factory for the benchmark models

    Args:
        name: "double_integrator" or "quadrotor"
    """
    if name == "double_integrator":
        return DoubleIntegrator(**kwargs)
    elif name == "quadrotor":
        return HoverQuadrotor(**kwargs)
    raise ValueError(f"Unknown model: {name}")
