# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Builders for rendering an ImageSpec into a Dockerfile and building it.
"""
import hashlib
import logging
from typing import Optional

from docker.errors import APIError, BuildError as DockerBuildError, DockerException
from jinja2 import Template

from ..errors import BuildError
from ..MODELS.image_spec import ImageSpec, PasswordPolicy
from ..RUNTIME.docker_runtime import DockerRuntime

logger = logging.getLogger(__name__)

DOCKERFILE_TEMPLATE = """\
FROM {{ base_image }}

ENV DEBIAN_FRONTEND=noninteractive

RUN apt-get update \\
    && apt-get install -y --no-install-recommends {{ packages | join(' ') }} \\
    && rm -rf /var/lib/apt/lists/*

RUN useradd --create-home --shell /bin/bash {{ user }} \\
    && mkdir -p /home/{{ user }}/.ssh \\
    && chmod 700 /home/{{ user }}/.ssh \\
    && chown -R {{ user }}:{{ user }} /home/{{ user }}/.ssh
{% if password_policy == 'hashed' %}
RUN echo '{{ user }}:{{ password_hash }}' | chpasswd -e
{% else %}
RUN passwd -l {{ user }}
{% endif %}
RUN mkdir -p /run/sshd \\
    && sed -i 's/^#\\?PermitRootLogin.*/PermitRootLogin no/' /etc/ssh/sshd_config \\
    && sed -i 's/^#\\?PubkeyAuthentication.*/PubkeyAuthentication yes/' /etc/ssh/sshd_config \\
    && sed -i 's/^#\\?PasswordAuthentication.*/PasswordAuthentication {{ 'yes' if password_policy == 'hashed' else 'no' }}/' /etc/ssh/sshd_config \\
    && sed -i 's/^#\\?Port .*/Port {{ exposed_port }}/' /etc/ssh/sshd_config

EXPOSE {{ exposed_port }}

CMD ["/usr/sbin/sshd", "-D", "-e"]
"""

FINGERPRINT_LABEL = "io.sshbox.fingerprint"
USER_LABEL = "io.sshbox.user"


class ImageBuilder:
    """
    Renders a build definition from an ImageSpec and invokes the build backend.
    """
    def __init__(self, runtime: Optional[DockerRuntime] = None):
        """
        Initializes the ImageBuilder.

        :param runtime: The container runtime used as build backend.
        """
        self.runtime = runtime or DockerRuntime()
        self.template = Template(DOCKERFILE_TEMPLATE)

    def render(self, spec: ImageSpec) -> str:
        """
        Renders the Dockerfile for a spec. Equal specs render identical text.

        :param spec: The image spec.
        :return: Dockerfile content.
        """
        return self.template.render(
            base_image=spec.base_image,
            packages=spec.sorted_packages(),
            user=spec.user_account,
            password_policy=spec.password_policy.value,
            password_hash=spec.password_hash if spec.password_policy == PasswordPolicy.HASHED else None,
            exposed_port=spec.exposed_port,
        )

    @staticmethod
    def fingerprint(dockerfile: str) -> str:
        return hashlib.sha256(dockerfile.encode("utf-8")).hexdigest()

    def build(self, spec: ImageSpec) -> str:
        """
        Builds the image described by `spec`.

        :param spec: The image spec.
        :return: The image id reported by the backend.
        :raises BuildError: On any failure of the build backend.
        """
        dockerfile = self.render(spec)
        labels = {
            FINGERPRINT_LABEL: self.fingerprint(dockerfile),
            USER_LABEL: spec.user_account,
        }
        logger.info("Building image %s from %s", spec.image_tag, spec.base_image)
        logger.debug("Dockerfile:\n%s", dockerfile)

        try:
            image_id, log_lines = self.runtime.build_image(dockerfile, tag=spec.image_tag, labels=labels)
        except DockerBuildError as e:
            build_log = "\n".join(
                chunk.get("stream", chunk.get("error", "")).rstrip()
                for chunk in (e.build_log or []) if isinstance(chunk, dict)
            )
            raise BuildError(f"Image build failed: {e.msg}", e, log=build_log) from e
        except (APIError, DockerException) as e:
            raise BuildError(f"Build backend error: {e}", e) from e

        for line in log_lines:
            logger.debug("build: %s", line)
        logger.info("Built image %s (%s)", spec.image_tag, image_id)
        return image_id
