from __future__ import annotations

import httpx
import pytest

from wimsbridge.app import ClassOwner, Settings, StudentIdentity, UrlType, WimsInterface
from wimsbridge.wims import (
    ClassRef,
    WimsClient,
    WimsProtocolError,
    create_mock_transport,
    json_error,
    json_reply,
    lines_error,
    lines_ok,
    make_score_records,
    raw_reply,
)

BASE_URL = 'https://wims.test/wims/wims.cgi'
HOME_URL = 'https://wims.test/wims/wims.cgi?session=QX12.1'

OWNER = ClassOwner(
    supervisor='Ada Lovelace',
    firstname='Ada',
    lastname='Lovelace',
    email='ada@example.org',
    institution='Lycee',
)
STUDENT = StudentIdentity(login='jdoe7', firstname='Jane', lastname='Doe')


def _interface(transport: httpx.BaseTransport) -> WimsInterface:
    return WimsInterface(WimsClient(BASE_URL, 'secret', transport=transport), default_lang='fr')


def test_connection_succeeds_when_both_formats_answer() -> None:
    transport, calls = create_mock_transport(checkident=[lines_ok(), json_reply()])

    with _interface(transport) as wims:
        assert wims.test_connection() is True

    assert [call.params['ident'] for call in calls] == ['moodle', 'moodlejsonhttps']


def test_connection_failure_names_failed_check() -> None:
    transport, _ = create_mock_transport(checkident=[lines_ok(), json_error('bad password')])

    with _interface(transport) as wims:
        assert wims.test_connection() is None
        assert wims.error_messages == ['WIMS connection test failed:', '- JSON interface: FAILED']


def test_connection_failure_of_both_checks() -> None:
    transport, _ = create_mock_transport(checkident=raw_reply('nope', status_code=403))

    with _interface(transport) as wims:
        assert wims.test_connection() is None
        assert wims.error_messages == [
            'WIMS connection test failed:',
            '- WIMS interface: FAILED',
            '- JSON interface: FAILED',
        ]


def test_connection_test_halts_on_protocol_violation() -> None:
    transport, _ = create_mock_transport(checkident=[lines_ok(), raw_reply('<html></html>')])

    with _interface(transport) as wims, pytest.raises(WimsProtocolError):
        wims.test_connection()


def test_select_existing_class(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(checkclass=json_reply())

    with _interface(transport) as wims:
        assert wims.select_class(ref, OWNER, name='Algebra') is True

    assert [call.job for call in calls] == ['checkclass']


def test_select_class_creates_and_opens_missing_class(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(
        checkclass=json_error('class not found'),
        addclass=lines_ok(),
        modclass=lines_ok(),
    )

    with _interface(transport) as wims:
        assert wims.select_class(ref, OWNER, name='Algebra') is True

    assert [call.job for call in calls] == ['checkclass', 'addclass', 'modclass']
    data1 = calls[1].params['data1']
    assert data1.startswith('description=Algebra\ninstitution=Lycee\nsupervisor=Ada Lovelace\nemail=ada@example.org\n')
    assert data1.endswith('lang=fr\nsecure=all\n')
    assert calls[1].params['data2'].startswith('lastname=Lovelace\nfirstname=Ada\npassword=Pwd')
    assert calls[2].params['data1'] == (
        'connections=+moodle/moodle_7+ +moodlejson/moodle_7+ +moodlehttps/moodle_7+ +moodlejsonhttps/moodle_7+\n'
    )


def test_select_class_reports_creation_failure(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(
        checkclass=json_error('class not found'),
        addclass=lines_error('bad email'),
    )

    with _interface(transport) as wims:
        assert wims.select_class(ref, OWNER, name='Algebra', lang='en') is None
        assert wims.error_messages[:2] == ['ERROR', 'bad email']

    assert 'lang=en\n' in calls[1].params['data1']


def test_verify_class_accessible(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(getclass=json_reply(description='Algebra'))

    with _interface(transport) as wims:
        assert wims.verify_class_accessible(ref) is True

    assert calls[0].job == 'getclass'


def test_student_url_registers_missing_user(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(
        checkuser=lines_error('user not found'),
        adduser=lines_ok(),
        authuser=json_reply(home_url=HOME_URL),
    )

    with _interface(transport) as wims:
        url = wims.get_student_url(ref, STUDENT, origin='198.51.100.2')
        again = wims.get_student_url(ref, STUDENT, url_type=UrlType.GRADE_PAGE)

    assert url == f'{HOME_URL}&lang=fr'
    assert again == f'{HOME_URL}&lang=fr&module=adm/class/userscore'
    assert [call.job for call in calls] == ['checkuser', 'adduser', 'authuser']


def test_student_url_fails_when_user_cannot_be_added(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(checkuser=lines_error('user not found'), adduser=lines_error('bad login'))

    with _interface(transport) as wims:
        assert wims.get_student_url(ref, STUDENT) is None
        assert 'bad login' in wims.error_messages

    assert [call.job for call in calls] == ['checkuser', 'adduser']


def test_teacher_url_for_exam(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(authuser=json_reply(home_url=HOME_URL))

    with _interface(transport) as wims:
        url = wims.get_teacher_url(ref, 'en', UrlType.EXAM, 3)

    assert url == f'{HOME_URL}&lang=en&module=adm/class/exam&exam=3'
    assert calls[0].params['quser'] == 'supervisor'


def test_teacher_url_failure_keeps_diagnostic(ref: ClassRef) -> None:
    transport, _ = create_mock_transport(authuser=json_error('class closed'))

    with _interface(transport) as wims:
        assert wims.get_teacher_url(ref, url_type=UrlType.WORKSHEET, arg=1) is None
        assert 'message: class closed' in wims.error_messages


def test_item_urls_need_an_identifier(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(authuser=json_reply(home_url=HOME_URL))

    with _interface(transport) as wims:
        with pytest.raises(ValueError):
            wims.get_teacher_url(ref, url_type=UrlType.WORKSHEET)
        with pytest.raises(ValueError):
            wims.get_teacher_url(ref, url_type=7)

    assert calls == []


def test_class_config_aggregates_sheets_and_exams(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(
        getclass=json_reply(query_class='1000007', description='Algebra', email='class@example.org'),
        getuser=json_reply(queryuser='supervisor', firstname='Ada', email='ada@example.org'),
        listsheets=json_reply(nbsheet=1, sheetlist=[1], sheettitlelist=['1:Intro:1']),
        getsheet=json_reply(sheet_status='1', sheet_expiration='20301231', sheet_title='Intro', sheet_description=''),
        listexams=json_reply(nbexam=0, examlist=[], examtitlelist=[]),
    )

    with _interface(transport) as wims:
        config = wims.get_class_config(ref)

    assert config == {
        'firstname': 'Ada',
        'email': 'class@example.org',
        'description': 'Algebra',
        'worksheets': {1: {'status': '1', 'expiration': '20301231', 'title': 'Intro', 'description': ''}},
        'exams': {},
    }
    assert [call.job for call in calls] == ['getclass', 'getuser', 'listsheets', 'getsheet', 'listexams']


def test_class_config_stops_at_first_failure(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(getclass=json_reply(), getuser=json_error('no supervisor'))

    with _interface(transport) as wims:
        assert wims.get_class_config(ref) is None

    assert [call.job for call in calls] == ['getclass', 'getuser']


def test_update_class_config_sends_each_block(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(
        modclass=lines_ok(),
        moduser=lines_ok(),
        modsheet=lines_ok(),
        modexam=lines_error('nothing done'),
    )
    data = {
        'lang': 'en',
        'description': 'Algebra II',
        'firstname': 'Ada',
        'email': 'ada@example.org',
        'worksheets': {1: {'status': '2', 'title': 'Intro'}},
        'exams': {2: {'status': '1'}, 3: {}},
    }

    with _interface(transport) as wims:
        assert wims.update_class_config(ref, data) is True

    assert [call.job for call in calls] == ['modclass', 'moduser', 'modsheet', 'modexam']
    assert calls[0].params['data1'] == 'description=Algebra II\nemail=ada@example.org\nlang=en\n'
    assert calls[1].params['data1'] == 'firstname=Ada\nemail=ada@example.org\n'
    assert calls[2].params['data1'] == 'status=2\ntitle=Intro\n'
    assert calls[3].params['qexam'] == '2'


def test_update_class_config_stops_on_failure(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(modclass=lines_error('expired'))

    with _interface(transport) as wims:
        assert wims.update_class_config(ref, {'lang': 'en', 'lastname': 'L', 'worksheets': {1: {'a': 1}}}) is None
        assert wims.error_messages[1] == 'expired'

    assert len(calls) == 1


def test_sheet_index(ref: ClassRef) -> None:
    transport, _ = create_mock_transport(
        listsheets=json_reply(nbsheet=2, sheetlist=[12, 34], sheettitlelist=['x:Intro:open', 'x:Final:closed']),
        listexams=json_reply(nbexam=1, examlist=[5], examtitlelist=['5:Midterm:0']),
    )

    with _interface(transport) as wims:
        index = wims.get_sheet_index(ref)

    assert index.worksheets == {12: {'title': 'Intro', 'state': 'open'}, 34: {'title': 'Final', 'state': 'closed'}}
    assert index.exams == {5: {'title': 'Midterm', 'state': '0'}}


def test_sheet_scores_scale_worksheets_only(ref: ClassRef) -> None:
    transport, calls = create_mock_transport(
        getsheetscores=json_reply(data_scores=make_score_records({'jdoe7': '855', 'asmith2': 0}, field='user_percent')),
        getexamscores=json_reply(data_scores=make_score_records({'jdoe7': 7.5})),
    )

    with _interface(transport) as wims:
        scores = wims.get_sheet_scores(ref, {'worksheets': [1], 'exams': [2]})

    assert scores['worksheets'][1]['jdoe7'] == pytest.approx(85.5)
    assert scores['worksheets'][1]['asmith2'] == 0
    assert scores['exams'] == {2: {'jdoe7': 7.5}}
    assert [call.job for call in calls] == ['getsheetscores', 'getexamscores']


@pytest.mark.parametrize('percent', ['', None, '-'])
def test_blank_worksheet_score_counts_as_zero(ref: ClassRef, percent: object) -> None:
    records = make_score_records({'jdoe7': percent, 'asmith2': '500'}, field='user_percent')
    transport, _ = create_mock_transport(getsheetscores=json_reply(data_scores=records))

    with _interface(transport) as wims:
        scores = wims.get_sheet_scores(ref, {'worksheets': [1]})

    assert scores['worksheets'][1] == {'jdoe7': 0.0, 'asmith2': pytest.approx(50.0)}


def test_sheet_scores_failure(ref: ClassRef) -> None:
    transport, _ = create_mock_transport(getsheetscores=json_error('no such sheet'))

    with _interface(transport) as wims:
        assert wims.get_sheet_scores(ref, {'worksheets': [9]}) is None


def test_score_record_without_value_is_a_protocol_violation(ref: ClassRef) -> None:
    transport, _ = create_mock_transport(getexamscores=json_reply(data_scores=[{'id': 'jdoe7'}]))

    with _interface(transport) as wims, pytest.raises(WimsProtocolError):
        wims.get_sheet_scores(ref, {'exams': [2]})


def test_from_settings_builds_configured_client() -> None:
    transport, calls = create_mock_transport(checkident=json_reply())
    config = Settings(server_url=BASE_URL, server_password='pw', lang='de', service_name='lms', timeout=5.0)

    with WimsInterface.from_settings(config, transport=transport) as wims:
        assert wims.default_lang == 'de'
        assert wims.client.check_ident_json() is True

    assert calls[0].params['ident'] == 'lmsjsonhttps'
    assert calls[0].params['passwd'] == 'pw'
