#! /usr/bin/env python3

# Copyright (c) 2013 The git-notify authors
# Derived from contrib/hooks/post-receive-email, which is
# Copyright (c) 2007 Andy Parkins
# and also includes contributions by other authors.
#
# This file is part of git-notify.
#
# git-notify is free software: you can redistribute it and/or
# modify it under the terms of the GNU General Public License version
# 2 as published by the Free Software Foundation.
#
# This program is distributed in the hope that it will be useful, but
# WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU
# General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see
# <http://www.gnu.org/licenses/>.

"""Send one email per new commit pushed to a git repository.

For each reference that was changed, this hook works out which
commits became reachable from the reference for the first time and
mails one notice per commit to a configured address.  Each notice
shows the commit's log message followed by a diffstat and the diff
itself, unless they are too big.  When a push brings in more commits
than notify.maxnotices, a single digest listing all of them is sent
instead.

Newly created branches are compared with the nearest ancestor that
is already reachable from another reference, so that pushing a new
branch does not announce the whole history of the project again.

The script can be used as a "post-receive" hook, in which case it
reads "OLDREV NEWREV REFNAME" lines from standard input, or it can be
given OLDREV NEWREV REFNAME on the command line.

To help with debugging, the --debug option causes the emails to be
written to standard output rather than sent using sendmail.

"""

__version__ = '1.0.0'

import sys
import os
import re
import time
import shlex
import fnmatch
import subprocess
import optparse
from collections import namedtuple
from email.header import Header


ZEROS = '0' * 40
SHA1_RE = re.compile(r'^[0-9a-f]{40}$')

# It is assumed in many places that the encoding is uniformly UTF-8.
ENCODING = 'UTF-8'

CONTENT_TYPE = 'text/plain; charset=%s' % (ENCODING,)

# Sentinel for the size limits meaning "embed whatever the size":
UNLIMITED = -1

DEFAULT_MAX_NOTICES = 100
DEFAULT_MAX_DIFF = 10000
DEFAULT_MAX_STAT = 10000
DEFAULT_MAILER = '/usr/sbin/sendmail'

GIT_EXECUTABLE = 'git'

BRANCH_PREFIX = 'refs/heads/'

PGP_SIGNATURE = '-----BEGIN PGP SIGNATURE-----'


class CommandError(Exception):
    def __init__(self, cmd, retcode, stderr=''):
        self.cmd = cmd
        self.retcode = retcode
        self.stderr = stderr
        Exception.__init__(
            self,
            'Command "%s" failed with retcode %s' % (' '.join(cmd), retcode,)
            )


class CommandLaunchError(Exception):
    def __init__(self, cmd, error):
        self.cmd = cmd
        Exception.__init__(
            self,
            'Cannot execute command "%s": %s' % (' '.join(cmd), error,)
            )


class CommandWriteError(Exception):
    def __init__(self, cmd, error):
        self.cmd = cmd
        Exception.__init__(
            self,
            'Cannot write to command "%s": %s' % (' '.join(cmd), error,)
            )


class ConfigurationException(Exception):
    pass


class InvalidObjectError(Exception):
    def __init__(self, name):
        self.name = name
        Exception.__init__(self, 'invalid object name %r' % (name,))


def log_msg(msg):
    sys.stderr.write(msg)


def log_warning(msg):
    sys.stderr.write('*** %s\n' % (msg,))


def read_output(cmd, input=None, keepends=False, **kw):
    if input is not None:
        stdin = subprocess.PIPE
        input = input.encode(ENCODING)
    else:
        stdin = None
    try:
        p = subprocess.Popen(
            cmd, stdin=stdin, stdout=subprocess.PIPE, stderr=subprocess.PIPE, **kw
            )
    except OSError as e:
        raise CommandLaunchError(cmd, e)
    (out, err) = p.communicate(input)
    retcode = p.wait()
    if retcode:
        raise CommandError(cmd, retcode, err.decode(ENCODING, 'replace'))
    out = out.decode(ENCODING, 'replace')
    if not keepends:
        out = out.rstrip('\n\r')
    return out


def read_git_output(args, input=None, keepends=False, **kw):
    """Read the output of a Git command."""

    return read_output([GIT_EXECUTABLE] + args, input=input, keepends=keepends, **kw)


def read_git_lines(args, keepends=False, **kw):
    """Return the lines output by Git command.

    Return as single lines, with newlines stripped off."""

    return read_git_output(args, keepends=True, **kw).splitlines(keepends)


def check_sha1(name):
    if not SHA1_RE.match(name):
        raise InvalidObjectError(name)
    return name


def format_date(timestamp, tz):
    """Format an epoch timestamp in the given "+HHMM" timezone.

    The result looks like git's default date format, e.g.
    "Tue Jan  2 11:00:00 2024 +0100"."""

    offset = int(tz)
    minutes = (abs(offset) // 100) * 60 + abs(offset) % 100
    if offset < 0:
        minutes = -minutes
    return '%s %s' % (time.asctime(time.gmtime(int(timestamp) + minutes * 60)), tz)


def header_encode(text, header_name=None):
    """Encode and line-wrap the value of an email header field.

    Plain ASCII text is left alone; anything else is encoded
    according to RFC 2047."""

    return Header(text, header_name=header_name).encode()


class Config(object):
    def __init__(self, section, env=None):
        """Represent a section of the git configuration.

        If env is specified, it is used as the environment of "git
        config", so that for example GIT_DIR or GIT_CONFIG can point
        it at another repository or file."""

        self.section = section
        self.env = env

    @staticmethod
    def _split(s):
        """Split NUL-terminated values."""

        words = s.split('\0')
        assert words[-1] == ''
        return words[:-1]

    def get(self, name, default=None):
        try:
            values = self._split(read_git_output(
                ['config', '--get', '--null', '%s.%s' % (self.section, name)],
                env=self.env, keepends=True,
                ))
            assert len(values) == 1
            return values[0]
        except CommandError:
            return default

    def get_bool(self, name, default=None):
        try:
            value = read_git_output(
                ['config', '--get', '--bool', '%s.%s' % (self.section, name)],
                env=self.env,
                )
        except CommandError:
            return default
        return value == 'true'

    def get_all(self, name, default=None):
        """Read a (possibly multivalued) setting from the configuration.

        Return the result as a list of values, or default if the name
        is unset."""

        try:
            return self._split(read_git_output(
                ['config', '--get-all', '--null', '%s.%s' % (self.section, name)],
                env=self.env, keepends=True,
                ))
        except CommandError as e:
            if e.retcode == 1:
                # "the section or key is invalid"; i.e., there is no
                # value for the specified key.
                return default
            else:
                raise

    def get_int(self, name, default=None):
        value = self.get(name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ConfigurationException(
                'The value of "%s.%s" must be an integer, not %r.'
                % (self.section, name, value)
                )

    def get_list(self, name):
        """Read a list of words, split on whitespace.

        The setting may also be given several times; the words of all
        values are concatenated."""

        words = []
        for value in self.get_all(name, default=[]):
            words.extend(value.split())
        return words


class Settings(namedtuple('Settings', [
        'recipient', 'sender', 'mailer', 'max_notices', 'repo_name',
        'max_diff', 'max_stat', 'browse_url', 'include', 'exclude',
        'no_merges', 'debug',
        ])):
    """The settings in force for one run, fixed once at start-up.

    browse_url, if set, already includes the repository path, so
    object links are built by appending "/?a=ACTION;h=SHA1"."""

    @classmethod
    def create(klass, config, options, repository):
        """Combine "git config" values with command-line options.

        Scalar options given on the command line win over the
        configuration; include/exclude lists are concatenated."""

        repo_name = (
            options.repository
            or config.get('repository')
            or repository.get_repo_name()
            )

        browse_url = options.browse_url or config.get('baseurl')
        if browse_url:
            browse_url = '%s/%s.git' % (browse_url.rstrip('/'), repo_name)

        def get_limit(value, name, default):
            if value is None:
                value = config.get_int(name, default=default)
            if value < UNLIMITED:
                raise ConfigurationException(
                    'Invalid %s value %d; use -1 for no limit or 0 to disable.'
                    % (name, value)
                    )
            return value

        max_notices = options.max_notices
        if max_notices is None:
            max_notices = config.get_int('maxnotices', default=DEFAULT_MAX_NOTICES)
        if max_notices < 0:
            raise ConfigurationException(
                'Invalid maxnotices value %d; it must not be negative.' % (max_notices,)
                )

        return klass(
            recipient=options.recipient or config.get('mail'),
            sender=options.sender or config.get('sender'),
            mailer=options.mailer or config.get('mailer') or DEFAULT_MAILER,
            max_notices=max_notices,
            repo_name=repo_name,
            max_diff=get_limit(options.max_diff, 'maxdiff', DEFAULT_MAX_DIFF),
            max_stat=get_limit(options.max_stat, 'maxstat', DEFAULT_MAX_STAT),
            browse_url=browse_url or None,
            include=tuple(config.get_list('include') + list(options.include or [])),
            exclude=tuple(config.get_list('exclude') + list(options.exclude or [])),
            no_merges=bool(options.no_merges or config.get_bool('nomerges', default=False)),
            debug=bool(options.debug),
            )


Identity = namedtuple('Identity', ['ident', 'name', 'email', 'timestamp', 'tz'])


class ObjectInfo(object):
    """The parsed contents of a commit or tag object."""

    IDENT_RE = re.compile(
        r'^(?P<role>author|committer|tagger) '
        r'(?P<ident>(?P<name>.*)<(?P<email>.*)>) '
        r'(?P<timestamp>\d+) (?P<tz>[+-]\d{4})$'
        )
    TAG_RE = re.compile(r'^tag (?P<tag>.*)$')

    def __init__(self, sha1, type, identities=None, tag=None, log=None):
        self.sha1 = sha1
        self.type = type
        self.identities = identities or {}
        self.tag = tag
        self.log = log or []

    @classmethod
    def parse(klass, sha1, type, text):
        """Parse the output of "git cat-file TYPE SHA1"."""

        identities = {}
        tag = None
        log = []
        in_log = False
        for line in text.split('\n'):
            if in_log:
                if line.startswith(PGP_SIGNATURE):
                    break
                log.append(line)
            elif not line:
                in_log = True
            else:
                m = klass.IDENT_RE.match(line)
                if m:
                    identities[m.group('role')] = Identity(
                        ident=m.group('ident'),
                        name=m.group('name').strip(),
                        email=m.group('email'),
                        timestamp=int(m.group('timestamp')),
                        tz=m.group('tz'),
                        )
                    continue
                m = klass.TAG_RE.match(line)
                if m:
                    tag = m.group('tag')

        while log and not log[-1]:
            log.pop()

        return klass(sha1, type, identities=identities, tag=tag, log=log)

    def get_identity(self, role):
        return self.identities.get(role)

    def get_subject(self):
        if self.log:
            return self.log[0]
        else:
            return ''


class GitRepository(object):
    """Run git to answer the questions git-notify asks about a repository."""

    REPO_NAME_RE = re.compile(r'^(?P<name>.+?)(?:\.git)?$')

    @staticmethod
    def _rev_spec(include, exclude):
        """Return a revision specification for "git rev-list --stdin"."""

        return ''.join(
            ['%s\n' % (sha1,) for sha1 in include]
            + ['^%s\n' % (sha1,) for sha1 in exclude]
            )

    def get_repo_name(self):
        path = os.path.realpath(read_git_output(['rev-parse', '--git-dir']))
        if os.path.basename(path) == '.git':
            path = os.path.dirname(path)
        m = self.REPO_NAME_RE.match(os.path.basename(path))
        if m:
            return m.group('name')
        else:
            return 'unknown repository'

    def list_refs(self):
        """Return (sha1, type, refname) for every reference in the repository."""

        refs = []
        for line in read_git_lines(
                ['for-each-ref', '--format=%(objectname) %(objecttype) %(refname)']
                ):
            (sha1, type, name) = line.split(' ', 2)
            refs.append((sha1, type, name))
        return refs

    def get_type(self, sha1):
        return read_git_output(['cat-file', '-t', sha1])

    def rev_list(self, include, exclude=(), no_merges=False, boundary=False):
        """List the commits reachable from include but not from exclude.

        The newest commits come first.  With boundary=True, the
        excluded commits bordering the listed ones follow, each
        prefixed with "-"."""

        cmd = ['rev-list']
        if no_merges:
            cmd.append('--no-merges')
        if boundary:
            cmd.append('--boundary')
        cmd.append('--stdin')
        return read_git_lines(cmd, input=self._rev_spec(include, exclude))

    def get_object_info(self, sha1):
        type = self.get_type(sha1)
        return ObjectInfo.parse(sha1, type, read_git_output(['cat-file', type, sha1]))

    def get_diff_stat(self, sha1):
        return read_git_output(
            ['diff-tree', '--stat', '-M', '--no-commit-id', '--root', sha1]
            )

    def get_diff_patch(self, sha1):
        return read_git_output(
            ['diff-tree', '-p', '-M', '--no-commit-id', '--root', sha1]
            )

    def log(self, include, exclude=(), no_merges=False, stat=False):
        cmd = ['log', '--no-color', '--pretty=medium']
        if no_merges:
            cmd.append('--no-merges')
        if stat:
            cmd.append('--stat')
        cmd.append('--stdin')
        return read_git_lines(cmd, input=self._rev_spec(include, exclude))


class CommitRange(object):
    """The new objects brought to a reference by one update."""

    def __init__(
            self, refname, branch, oldrev, newrev, new_branch, sha1s,
            excluded=(), annotated_tag=False,
            ):
        self.refname = refname
        self.branch = branch
        # The effective lower bound; None if nothing older is known.
        self.oldrev = oldrev
        self.newrev = newrev
        self.new_branch = new_branch
        # Oldest first:
        self.sha1s = sha1s
        # Further commits whose history is not new, besides oldrev:
        self.excluded = excluded
        self.annotated_tag = annotated_tag

    def __len__(self):
        return len(self.sha1s)


class RangeResolver(object):
    """Work out which objects a reference update makes new.

    For an update of an existing branch, the new commits are simply

        git rev-list ^OLDREV NEWREV ^EXCLUDED1 ^EXCLUDED2 ...

    where EXCLUDEDn are the tips of the other branches matching one of
    the exclude patterns.  For a branch that was just created there is
    no OLDREV; the nearest ancestor of NEWREV that some other
    reference already contains is used in its place."""

    def __init__(self, repository, settings):
        self.repository = repository
        self.settings = settings

    @staticmethod
    def get_branch(refname):
        if refname.startswith(BRANCH_PREFIX):
            return refname[len(BRANCH_PREFIX):]
        else:
            return refname

    def is_excluded(self, branch):
        for pattern in self.settings.exclude:
            if fnmatch.fnmatchcase(branch, pattern):
                return True
        return False

    def is_wanted(self, branch):
        if self.settings.include and branch not in self.settings.include:
            return False
        return not self.is_excluded(branch)

    def get_excluded_revs(self, refname):
        """Return the tips of the other branches matching an exclude pattern."""

        if not self.settings.exclude:
            return []
        sha1s = set()
        for (sha1, type, name) in self.repository.list_refs():
            if (
                    name != refname
                    and name.startswith(BRANCH_PREFIX)
                    and self.is_excluded(self.get_branch(name))
                    ):
                sha1s.add(sha1)
        return sorted(sha1s)

    def find_fork_points(self, newrev, refname):
        """Return the ancestors of newrev where it meets other references.

        These are the commits that other references already contain
        and that border the new history, nearest first.  A merge of
        several existing branches has one per branch.  Return [newrev]
        if newrev is already reachable from another reference, or []
        if no other reference shares any history with it."""

        others = set(
            sha1
            for (sha1, type, name) in self.repository.list_refs()
            if name != refname and type in ('commit', 'tag')
            )
        if not others:
            return []

        lines = self.repository.rev_list([newrev], sorted(others), boundary=True)
        if not lines:
            return [newrev]
        return [check_sha1(line[1:]) for line in lines if line.startswith('-')]

    def resolve(self, oldrev, newrev, refname):
        """Return a CommitRange for this update, or None if it is not reported."""

        check_sha1(oldrev)
        check_sha1(newrev)

        branch = self.get_branch(refname)
        if not self.is_wanted(branch):
            return None

        if newrev == ZEROS:
            log_warning('reference %s was deleted; no notice sent' % (refname,))
            return None

        new_branch = oldrev == ZEROS
        excluded = self.get_excluded_revs(refname)

        if self.repository.get_type(newrev) == 'tag':
            # An annotated tag is announced by itself.
            return CommitRange(
                refname, branch, None if new_branch else oldrev, newrev,
                new_branch, [newrev], excluded=excluded, annotated_tag=True,
                )

        if new_branch:
            fork_points = self.find_fork_points(newrev, refname)
            if fork_points:
                boundary = fork_points[0]
                excluded = [
                    sha1 for sha1 in fork_points[1:] if sha1 not in excluded
                    ] + excluded
            else:
                boundary = None
        else:
            boundary = oldrev

        if boundary == newrev:
            sha1s = []
        else:
            exclude = list(excluded)
            if boundary:
                exclude.insert(0, boundary)
            sha1s = [
                check_sha1(line)
                for line in self.repository.rev_list(
                    [newrev], exclude, no_merges=self.settings.no_merges,
                    )
                ]
            sha1s.reverse()

        return CommitRange(
            refname, branch, boundary, newrev, new_branch, sha1s, excluded=excluded,
            )


class Notice(object):
    """One notification email: a subject plus the lines of its body."""

    def __init__(self, subject, lines, content_type=CONTENT_TYPE):
        self.subject = subject
        self.lines = lines
        self.content_type = content_type

    def get_body(self):
        return ''.join('%s\n' % (line,) for line in self.lines)


def object_url(browse_url, action, sha1):
    return '%s/?a=%s;h=%s' % (browse_url, action, sha1)


def fits(text, limit):
    """Return True iff text may be embedded under the size limit."""

    if limit == UNLIMITED:
        return True
    elif not limit:
        return False
    else:
        return len(text.encode(ENCODING)) < limit


COMMIT_LINE_RE = re.compile(r'^commit (?P<sha1>[0-9a-f]{40})\b')


def rewrite_log_line(line, browse_url):
    """Turn a "commit SHA1" line of "git log" output into a link."""

    if browse_url:
        m = COMMIT_LINE_RE.match(line)
        if m:
            return 'URL:    %s' % (object_url(browse_url, 'commit', m.group('sha1')),)
    return line


def render_object_notice(repository, settings, branch, sha1):
    """Build the Notice describing a single commit or tag object."""

    info = repository.get_object_info(sha1)
    if info.type == 'tag':
        (label, role, action) = ('Tag', 'tagger', 'tag')
    else:
        (label, role, action) = ('Commit', 'author', 'commit')
    ident = info.get_identity(role)

    lines = [
        'Module: %s' % (settings.repo_name,),
        'Branch: %s' % (branch,),
        '%-7s %s' % (label + ':', sha1),
        ]
    if settings.browse_url:
        lines.append('URL:    %s' % (object_url(settings.browse_url, action, sha1),))
        lines.append('')
    if ident is not None:
        lines.append('%-7s %s' % (role.capitalize() + ':', ident.ident))
        lines.append('Date:   %s' % (format_date(ident.timestamp, ident.tz),))
    lines.append('')
    lines.extend(info.log)

    if ident is not None:
        name = ident.name
    else:
        name = 'unknown'

    if info.type == 'tag':
        subject = '%s : %s: %s' % (info.tag, name, info.get_subject())
        return Notice(subject, lines)

    extra = []
    if settings.max_stat:
        stat = repository.get_diff_stat(sha1)
        if stat and fits(stat, settings.max_stat):
            extra.extend(stat.split('\n'))

    if settings.max_diff:
        diff = repository.get_diff_patch(sha1)
        if fits(diff, settings.max_diff):
            if diff:
                if extra:
                    extra.append('')
                extra.extend(diff.split('\n'))
        elif settings.browse_url:
            extra.append(
                'Diff:   %s' % (object_url(settings.browse_url, 'commitdiff', sha1),)
                )

    if extra:
        lines.extend(['', '---', ''])
        lines.extend(extra)

    subject = '%s: %s' % (name, info.get_subject())
    return Notice(subject, lines)


def render_digest_notice(repository, settings, commit_range):
    """Build the single Notice summarizing a whole CommitRange."""

    exclude = list(commit_range.excluded)
    if commit_range.oldrev:
        exclude.insert(0, commit_range.oldrev)
    lines = [
        rewrite_log_line(line, settings.browse_url)
        for line in repository.log(
            [commit_range.newrev], exclude,
            no_merges=settings.no_merges,
            stat=bool(settings.max_stat),
            )
        ]
    subject = 'New commits on %s branch %s' % (settings.repo_name, commit_range.branch)
    if commit_range.new_branch:
        subject += ' (new branch)'
    return Notice(subject, lines)


def generate_notices(repository, settings, commit_range):
    """Generate the Notices for commit_range, oldest commit first.

    Too many commits to mail individually yield a single digest.  An
    annotated tag is always announced by its own notice."""

    if not commit_range.annotated_tag and len(commit_range) > settings.max_notices:
        yield render_digest_notice(repository, settings, commit_range)
    else:
        for sha1 in commit_range.sha1s:
            yield render_object_notice(repository, settings, commit_range.branch, sha1)


class Mailer(object):
    """An object that can send notices."""

    def send(self, recipient, notice):
        """Send notice to recipient."""

        raise NotImplementedError()


class SendMailer(Mailer):
    """Send notices by piping them into a sendmail-compatible program.

    The program is invoked as "COMMAND [-f SENDER] RECIPIENT"."""

    def __init__(self, command=DEFAULT_MAILER, sender=None):
        self.command = shlex.split(command)
        self.sender = sender

    def format_message(self, notice):
        return 'Subject: %s\n\n%s' % (
            header_encode(notice.subject, header_name='Subject'),
            notice.get_body(),
            )

    def send(self, recipient, notice):
        cmd = list(self.command)
        if self.sender:
            cmd.extend(['-f', self.sender])
        cmd.append(recipient)
        try:
            p = subprocess.Popen(cmd, stdin=subprocess.PIPE)
        except OSError as e:
            raise CommandLaunchError(cmd, e)
        try:
            p.stdin.write(self.format_message(notice).encode(ENCODING))
            p.stdin.close()
        except OSError as e:
            log_msg(
                '*** Error while sending notice\n'
                '***  - mail sending aborted.\n'
                )
            p.terminate()
            p.wait()
            raise CommandWriteError(cmd, e)
        retcode = p.wait()
        if retcode:
            raise CommandError(cmd, retcode)


class OutputMailer(Mailer):
    """Write notices to an output stream, bracketed by lines of '=' characters.

    This is intended for debugging purposes."""

    SEPARATOR = '=' * 75 + '\n'

    def __init__(self, f):
        self.f = f

    def send(self, recipient, notice):
        self.f.write(self.SEPARATOR)
        self.f.write('To: %s\n' % (recipient,))
        self.f.write('Subject: %s\n' % (header_encode(notice.subject, header_name='Subject'),))
        self.f.write('Content-Type: %s\n' % (notice.content_type,))
        self.f.write('\n')
        self.f.write(notice.get_body())
        self.f.write(self.SEPARATOR)


def dispatch(mailer, recipient, notice):
    """Send notice with mailer; do nothing if there is no recipient.

    Return True iff the notice was handed to the mailer."""

    if not recipient:
        return False
    mailer.send(recipient, notice)
    return True


class Notifier(object):
    """Carry reference updates through resolution, rendering and sending."""

    def __init__(self, repository, settings, mailer):
        self.repository = repository
        self.settings = settings
        self.mailer = mailer
        self.resolver = RangeResolver(repository, settings)

    def process_update(self, oldrev, newrev, refname):
        """Send the notices for one reference update.

        Return the number of notices sent."""

        commit_range = self.resolver.resolve(oldrev, newrev, refname)
        if commit_range is None or not commit_range.sha1s:
            return 0
        if not self.settings.recipient:
            return 0

        if not self.settings.debug:
            log_msg(
                'Sending notification emails to: %s\n' % (self.settings.recipient,)
                )
        count = 0
        for notice in generate_notices(self.repository, self.settings, commit_range):
            if dispatch(self.mailer, self.settings.recipient, notice):
                count += 1
        return count


def run_as_update_hook(notifier, oldrev, newrev, refname):
    return notifier.process_update(oldrev, newrev, refname)


def run_as_post_receive_hook(notifier, lines):
    """Process "OLDREV NEWREV REFNAME" lines one at a time."""

    count = 0
    for line in lines:
        words = line.split()
        if not words:
            continue
        if len(words) != 3:
            log_warning('ignoring malformed input line %r' % (line.rstrip('\n'),))
            continue
        (oldrev, newrev, refname) = words
        count += notifier.process_update(oldrev, newrev, refname)
    return count


def choose_mailer(settings):
    if settings.debug:
        return OutputMailer(sys.stdout)
    else:
        return SendMailer(settings.mailer, sender=settings.sender)


def build_parser():
    parser = optparse.OptionParser(
        description=__doc__,
        usage='%prog [OPTIONS] [--] OLDREV NEWREV REFNAME\n   or: %prog [OPTIONS] < LINES',
        version='%prog ' + __version__,
        )

    parser.add_option(
        '-m', '--recipient', action='store', default=None,
        help='Send notices to this address.  Default: notify.mail.',
        )
    parser.add_option(
        '-f', '--sender', action='store', default=None,
        help='Envelope sender passed to the mailer.  Default: notify.sender.',
        )
    parser.add_option(
        '-M', '--mailer', action='store', default=None,
        help=(
            'Sendmail-compatible program used to send notices.  '
            'Default: notify.mailer, else %s.' % (DEFAULT_MAILER,)
            ),
        )
    parser.add_option(
        '-n', '--max-notices', action='store', type='int', default=None,
        help=(
            'Send one digest instead of individual notices when more than '
            'this many commits arrive.  Default: notify.maxnotices, else %d.'
            % (DEFAULT_MAX_NOTICES,)
            ),
        )
    parser.add_option(
        '-r', '--repository', action='store', default=None,
        help='Repository name shown in notices.  Default: notify.repository.',
        )
    parser.add_option(
        '-s', '--max-diff', action='store', type='int', default=None,
        help='Maximum diff size in bytes (-1 for no limit, 0 for no diff).',
        )
    parser.add_option(
        '-S', '--max-stat', action='store', type='int', default=None,
        help='Maximum diffstat size in bytes (-1 for no limit, 0 for no diffstat).',
        )
    parser.add_option(
        '-u', '--browse-url', action='store', default=None,
        help='Base URL of the gitweb repository browser.  Default: notify.baseurl.',
        )
    parser.add_option(
        '-i', '--include', action='append', default=[], metavar='BRANCH',
        help='Report only on the given branches (may be repeated).',
        )
    parser.add_option(
        '-x', '--exclude', action='append', default=[], metavar='BRANCH',
        help='Do not report on branches matching this pattern (may be repeated).',
        )
    parser.add_option(
        '-X', '--no-merges', action='store_true', default=False,
        help='Leave merge commits out of the notices.',
        )
    parser.add_option(
        '-d', '--debug', '--stdout', action='store_true', default=False,
        help='Output notices to stdout rather than sending them.',
        )
    return parser


def main(args):
    parser = build_parser()
    (options, args) = parser.parse_args(args)
    if args and len(args) != 3:
        parser.error('Need zero or three non-option arguments')

    config = Config('notify')
    repository = GitRepository()

    try:
        settings = Settings.create(config, options, repository)
        notifier = Notifier(repository, settings, choose_mailer(settings))

        # Dual mode: if arguments were specified on the command line,
        # handle that one update; otherwise read updates from stdin.
        if args:
            (oldrev, newrev, refname) = args
            run_as_update_hook(notifier, oldrev, newrev, refname)
        else:
            run_as_post_receive_hook(notifier, sys.stdin)
    except ConfigurationException as e:
        sys.exit(str(e))
    except CommandError as e:
        log_msg('fatal: git-notify: %s\n' % (e,))
        if e.stderr:
            log_msg(e.stderr)
        if e.retcode > 0:
            sys.exit(e.retcode)
        sys.exit(1)
    except (CommandLaunchError, CommandWriteError, InvalidObjectError) as e:
        sys.exit('fatal: git-notify: %s' % (e,))


def run():
    main(sys.argv[1:])


if __name__ == '__main__':
    run()
